#!/usr/bin/env python3
"""Post stdin or a file to a Discord webhook, by channel nickname."""

import argparse
import functools
import os
import sys
from dataclasses import dataclass, field

import requests
import toml
from dotenv import load_dotenv

print = functools.partial(print, flush=True)

CONFIG_FILENAME = ".discordcat"
CONFIG_ENV_VAR = "DISCORDCAT_CONFIG"
DEFAULT_USERNAME = "bot"


# --- Errors ---

class DiscordcatError(Exception):
    pass


class ConfigNotFound(DiscordcatError, FileNotFoundError):
    pass


class ConfigParseError(DiscordcatError):
    pass


class UnknownChannel(DiscordcatError):
    pass


# --- Output ---

def green(text: str) -> str:
    return f"\x1b[01;32m{text}\x1b[0m"


def red(text: str) -> str:
    return f"\x1b[01;31m{text}\x1b[0m"


# --- Settings file ---

@dataclass
class Settings:
    default_channel: str = ""
    channels: dict[str, str] = field(default_factory=dict)
    # Top-level keys this tool does not use, written back untouched.
    extra: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {**self.extra, "default_channel": self.default_channel, "channels": dict(self.channels)}


class ConfigStore:
    """Reads and writes the TOML settings file at a fixed path.

    upsert_channel is an unlocked read-modify-write: two concurrent
    invocations race and the last writer wins.
    """

    def __init__(self, path: str):
        self.path = path

    def load(self) -> Settings:
        if not os.path.exists(self.path):
            raise ConfigNotFound(f"Config not found at {self.path}. Run with --configure first.")
        try:
            with open(self.path, encoding="utf-8") as f:
                data = toml.load(f)
        except (toml.TomlDecodeError, UnicodeDecodeError) as e:
            raise ConfigParseError(f"Could not parse {self.path}: {e}") from e

        default_channel = data.pop("default_channel", "")
        channels = data.pop("channels", {})
        if not isinstance(default_channel, str) or not isinstance(channels, dict):
            raise ConfigParseError(f"Could not parse {self.path}: unexpected layout")
        bad = [name for name, url in channels.items() if not isinstance(url, str)]
        if bad:
            raise ConfigParseError(f"Could not parse {self.path}: channel {bad[0]!r} is not a URL string")
        return Settings(default_channel=default_channel, channels=channels, extra=data)

    def save(self, settings: Settings):
        with open(self.path, "w", encoding="utf-8") as f:
            f.write(toml.dumps(settings.to_dict()))

    def upsert_channel(self, name: str, webhook_url: str):
        try:
            settings = self.load()
        except ConfigNotFound:
            # First channel ever configured becomes the default.
            settings = Settings(default_channel=name)
        settings.channels[name] = webhook_url
        self.save(settings)


def get_config_path() -> str:
    """Settings path: $DISCORDCAT_CONFIG, else .discordcat next to this script."""
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return os.path.expanduser(override)
    return os.path.join(os.path.dirname(os.path.abspath(__file__)), CONFIG_FILENAME)


# --- Channel resolution ---

def resolve_webhook_url(webhook_url: str | None, channel: str | None, settings: Settings | None) -> str:
    """Explicit webhook URL first, then the named (or default) channel."""
    if webhook_url:
        return webhook_url
    if settings is not None:
        url = settings.channels.get(channel or settings.default_channel)
        if url:
            return url
    raise UnknownChannel(channel or (settings.default_channel if settings else ""))


# --- Dispatch ---

def read_message(stream) -> str:
    text = stream.read().decode("utf-8", errors="replace")
    if text.endswith("\n"):
        text = text[:-1]
    return text


def send_message(content: str, username: str | None, webhook_url: str) -> bool:
    """POST a text message. Discord answers 204 on success; anything else, 200 included, failed."""
    payload = {"content": content, "username": username or DEFAULT_USERNAME}
    resp = requests.post(webhook_url, json=payload, headers={"Content-Type": "application/json"})
    if resp.status_code == 204:
        print(green(f'Send message "{content}"'))
        return True
    print(red(f'Failed send message "{content}" (status {resp.status_code})'), file=sys.stderr)
    return False


def send_file(filepath: str, filename: str | None, webhook_url: str) -> bool:
    """Upload one file as the multipart field "file". Success is a 200."""
    with open(filepath, "rb") as f:
        data = f.read()
    resp = requests.post(webhook_url, files={"file": (filename or filepath, data)})
    if resp.status_code == 200:
        print(green("Send file"))
        return True
    print(red(f'Failed send file "{resp.status_code}"'), file=sys.stderr)
    return False


# --- Interactive setup ---

def configure(store: ConfigStore, read_line=input):
    name = read_line("Nickname for channel: ").strip()
    webhook_url = read_line("Please input webhook url: ").strip()
    store.upsert_channel(name, webhook_url)
    print(f"Saved channel '{name}' to {store.path}")


# --- CLI ---

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Send stdin or a file to a Discord webhook")
    parser.add_argument("--configure", action="store_true", help="Setup the configuration")
    parser.add_argument("--username", help="Username")
    parser.add_argument("-c", "--channel", help="Channel")
    parser.add_argument("-f", "--file", help="File")
    parser.add_argument("--filename", help="Filename")
    parser.add_argument("--webhook_url", help="Webhook URL")
    return parser.parse_args(argv)


def run(args: argparse.Namespace, store: ConfigStore, stdin=None) -> int:
    settings = store.load()

    try:
        webhook_url = resolve_webhook_url(args.webhook_url, args.channel, settings)
    except UnknownChannel:
        print(red("Unknown channel"), file=sys.stderr)
        return 1

    # A rejected request is reported but still exits 0.
    if args.file:
        send_file(args.file, args.filename, webhook_url)
        return 0

    content = read_message(stdin if stdin is not None else sys.stdin.buffer)
    send_message(content, args.username, webhook_url)
    return 0


def main(argv: list[str] | None = None):
    args = parse_args(argv)

    load_dotenv()
    store = ConfigStore(get_config_path())

    try:
        if args.configure:
            configure(store)
            sys.exit(0)
        sys.exit(run(args, store))
    except Exception as e:
        print(red(f"ERROR: {e}"), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
