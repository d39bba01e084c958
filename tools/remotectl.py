from __future__ import annotations

import argparse

import paho.mqtt.publish as publish

from remote_audio.commands import (
    Command,
    FadeToVolume,
    PlaySound,
    SetVolume,
    StopSound,
    encode_command,
)


def build_command(args: argparse.Namespace) -> Command:
    if args.cmd == "play":
        return PlaySound(id=args.id, path=args.path, is_loop=args.once, overwrite=not args.keep)
    if args.cmd == "stop":
        return StopSound(id=args.id)
    if args.cmd == "volume":
        return SetVolume(id=args.id, volume=args.volume)
    if args.cmd == "fade":
        return FadeToVolume(id=args.id, volume=args.volume, time_in_ms=args.ms)
    raise ValueError(f"unknown command {args.cmd!r}")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Send one command to a remote audio player")
    ap.add_argument("-s", "--server", default="localhost")
    ap.add_argument("-p", "--port", type=int, default=1883)
    ap.add_argument("-t", "--topic", default="remoteaudio/commands")
    sub = ap.add_subparsers(dest="cmd", required=True)
    p_play = sub.add_parser("play", help="play a sound file under an id")
    p_play.add_argument("id")
    p_play.add_argument("path")
    # --once maps to is_loop=true: play once, untracked
    p_play.add_argument("--once", action="store_true")
    p_play.add_argument("--keep", action="store_true",
                        help="do not replace a running sound with the same id")

    p_stop = sub.add_parser("stop", help="stop the sound under an id")
    p_stop.add_argument("id")

    p_vol = sub.add_parser("volume", help="set the volume of a sound")
    p_vol.add_argument("id")
    p_vol.add_argument("volume", type=float)

    p_fade = sub.add_parser("fade", help="fade a sound to a volume")
    p_fade.add_argument("id")
    p_fade.add_argument("volume", type=float)
    p_fade.add_argument("ms", type=float, help="fade duration in milliseconds")
    return ap


def main(argv=None):
    args = build_parser().parse_args(argv)

    payload = encode_command(build_command(args))
    publish.single(args.topic, payload, qos=0, hostname=args.server, port=args.port)
    print(payload)


if __name__ == "__main__":
    main()
