"""``phtun``: command-line client for the tunnel admin API.

Connection settings resolve in order: command-line flag, environment
(``TUNNEL_URL`` / ``ADMIN_API_KEY``), then the TOML config file at
``$XDG_CONFIG_HOME/phtun/config.toml``.

Examples::

    phtun list
    phtun block phc_abc --label "Staging project"
    phtun domain block evil.example
    phtun domain block phc_abc evil.example
    phtun config init
    phtun config set url https://tunnel.example.com
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import tomllib
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import quote

import httpx

DEFAULT_URL = "http://localhost:3010"
CONFIG_KEYS: tuple[str, ...] = ("url", "key")


class CliError(Exception):
    """Printed to stderr; the process exits 1."""


# ── Config file ──────────────────────────────────────────────────────


def get_config_dir(env: Mapping[str, str] | None = None) -> Path:
    env = os.environ if env is None else env
    xdg = env.get("XDG_CONFIG_HOME") or str(Path(env.get("HOME") or "~").expanduser() / ".config")
    return Path(xdg) / "phtun"


def get_config_path(env: Mapping[str, str] | None = None) -> Path:
    return get_config_dir(env) / "config.toml"


def load_config(env: Mapping[str, str] | None = None) -> dict[str, str]:
    path = get_config_path(env)
    if not path.exists():
        return {}
    with open(path, "rb") as f:
        raw = tomllib.load(f)
    return {k: v for k, v in raw.items() if k in CONFIG_KEYS and isinstance(v, str)}


def save_config(config: Mapping[str, str], env: Mapping[str, str] | None = None) -> Path:
    """Write the flat ``url``/``key`` table.

    JSON string escaping is a subset of TOML basic-string escaping, so
    ``json.dumps`` yields valid TOML values.
    """
    path = get_config_path(env)
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [f"{k} = {json.dumps(config[k])}" for k in CONFIG_KEYS if config.get(k)]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


# ── HTTP client ──────────────────────────────────────────────────────


class AdminClient:
    """Thin wrapper over the tunnel's /admin endpoints."""

    def __init__(
        self,
        url: str,
        key: str,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=url.rstrip("/"),
            headers={"Authorization": f"Bearer {key}"},
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def request(self, method: str, path: str, body: dict[str, Any] | None = None) -> Any:
        try:
            response = self._client.request(method, path, json=body)
        except httpx.HTTPError as e:
            raise CliError(f"Error: could not reach {self._client.base_url}: {e}") from e
        if response.is_error:
            raise CliError(f"Error {response.status_code}: {response.text}")
        return response.json()

    def list_identifiers(self) -> list[dict[str, Any]]:
        return self.request("GET", "/admin/identifiers")

    def list_domains(self) -> list[str]:
        return self.request("GET", "/admin/domains")

    def block(self, identifier: str, label: str) -> dict[str, Any]:
        return self.request("POST", "/admin/identifiers", {"identifier": identifier, "label": label})

    def unblock(self, identifier: str) -> None:
        self.request("DELETE", f"/admin/identifiers/{quote(identifier, safe='')}")

    def list_identifier_domains(self, identifier: str) -> list[str]:
        return self.request("GET", f"/admin/identifiers/{quote(identifier, safe='')}/blocked-domains")

    def block_domain(self, domain: str, identifier: str | None = None) -> None:
        if identifier is None:
            self.request("POST", "/admin/domains", {"domain": domain})
        else:
            self.request(
                "POST",
                f"/admin/identifiers/{quote(identifier, safe='')}/blocked-domains",
                {"domain": domain},
            )

    def unblock_domain(self, domain: str, identifier: str | None = None) -> None:
        encoded = quote(domain, safe="")
        if identifier is None:
            self.request("DELETE", f"/admin/domains/{encoded}")
        else:
            self.request(
                "DELETE",
                f"/admin/identifiers/{quote(identifier, safe='')}/blocked-domains/{encoded}",
            )


# ── Commands ─────────────────────────────────────────────────────────


def _split_domain_args(args: list[str], usage: str) -> tuple[str | None, str]:
    """``[domain]`` -> global; ``[identifier, domain]`` -> per-identifier."""
    if len(args) == 1:
        return None, args[0]
    if len(args) == 2:
        return args[0], args[1]
    raise CliError(f"Usage: {usage}")


def cmd_list(client: AdminClient, args: argparse.Namespace) -> None:
    entries = client.list_identifiers()
    domains = client.list_domains()

    if not entries and not domains:
        print("Blocklist is empty, all traffic is allowed.")
        return

    if entries:
        print(f"{len(entries)} blocked identifier(s):\n")
        for e in entries:
            print(f"  {e['identifier']} ({e['label']})")
            if e.get("blockedDomains"):
                print(f"    domains: {', '.join(e['blockedDomains'])}")

    if domains:
        if entries:
            print()
        print(f"{len(domains)} global blocked domain(s):\n")
        for d in domains:
            print(f"  {d}")


def cmd_block(client: AdminClient, args: argparse.Namespace) -> None:
    entry = client.block(args.identifier, args.label)
    print(f"Blocked identifier {entry['identifier']} ({entry['label']})")


def cmd_unblock(client: AdminClient, args: argparse.Namespace) -> None:
    client.unblock(args.identifier)
    print(f"Unblocked identifier {args.identifier}")


def cmd_domain_list(client: AdminClient, args: argparse.Namespace) -> None:
    if args.identifier:
        domains = client.list_identifier_domains(args.identifier)
        if not domains:
            print(f"No blocked domains for identifier {args.identifier}.")
            return
        print(f"Blocked domains for {args.identifier}:\n")
    else:
        domains = client.list_domains()
        if not domains:
            print("No global blocked domains.")
            return
        print(f"{len(domains)} global blocked domain(s):\n")
    for d in domains:
        print(f"  {d}")


def cmd_domain_block(client: AdminClient, args: argparse.Namespace) -> None:
    identifier, domain = _split_domain_args(
        args.args, "phtun domain block <domain> OR phtun domain block <identifier> <domain>",
    )
    client.block_domain(domain, identifier)
    if identifier is None:
        print(f"Blocked domain globally: {domain}")
    else:
        print(f"Blocked domain {domain} for identifier {identifier}")


def cmd_domain_unblock(client: AdminClient, args: argparse.Namespace) -> None:
    identifier, domain = _split_domain_args(
        args.args, "phtun domain unblock <domain> OR phtun domain unblock <identifier> <domain>",
    )
    client.unblock_domain(domain, identifier)
    if identifier is None:
        print(f"Unblocked domain globally: {domain}")
    else:
        print(f"Unblocked domain {domain} for identifier {identifier}")


def _check_config_key(key: str) -> None:
    if key not in CONFIG_KEYS:
        raise CliError(f"Invalid key: {key}. Valid keys: {', '.join(CONFIG_KEYS)}")


def cmd_config_set(args: argparse.Namespace, env: Mapping[str, str]) -> None:
    _check_config_key(args.key)
    config = load_config(env)
    config[args.key] = args.value
    save_config(config, env)
    shown = "***" if args.key == "key" else args.value
    print(f"Set {args.key} = {shown}")


def cmd_config_get(args: argparse.Namespace, env: Mapping[str, str]) -> None:
    config = load_config(env)
    if args.key:
        _check_config_key(args.key)
        print(config.get(args.key, "(not set)"))
        return
    print(f"Config: {get_config_path(env)}\n")
    print(f"  url = {config.get('url', '(not set)')}")
    print(f"  key = {'***' if config.get('key') else '(not set)'}")


def cmd_config_path(args: argparse.Namespace, env: Mapping[str, str]) -> None:
    print(get_config_path(env))


def _ask(question: str, default: str | None = None) -> str:
    suffix = f" ({default})" if default else ""
    return input(f"{question}{suffix}: ").strip() or default or ""


def cmd_config_init(args: argparse.Namespace, env: Mapping[str, str]) -> None:
    """Prompt for the server URL and admin key, then write the config file."""
    current = load_config(env)
    url = _ask("Server URL", current.get("url") or DEFAULT_URL)
    # Blank keeps the stored key; it is never echoed as a default.
    key = _ask("Admin API key") or current.get("key", "")
    path = save_config({"url": url, "key": key}, env)
    print(f"Config saved to {path}")


# ── Parser ───────────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="phtun", description="PostHog tunnel admin CLI")
    parser.add_argument("--url", default=None, help=f"Tunnel server URL (default: {DEFAULT_URL})")
    parser.add_argument("--key", default=None, help="Admin API key")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("list", help="List blocked identifiers and global domains")
    p.set_defaults(handler=cmd_list)

    p = sub.add_parser("block", aliases=["deny"], help="Block a project identifier")
    p.add_argument("identifier")
    p.add_argument("--label", required=True, help="Human-readable label")
    p.set_defaults(handler=cmd_block)

    p = sub.add_parser("unblock", aliases=["allow"], help="Unblock a project identifier")
    p.add_argument("identifier")
    p.set_defaults(handler=cmd_unblock)

    domain = sub.add_parser("domain", help="Manage blocked domains")
    domain_sub = domain.add_subparsers(dest="domain_command", required=True)
    p = domain_sub.add_parser("list", help="List global or per-identifier blocked domains")
    p.add_argument("identifier", nargs="?")
    p.set_defaults(handler=cmd_domain_list)
    p = domain_sub.add_parser(
        "block", aliases=["deny"],
        help="Block a domain (1 arg = global, 2 args = <identifier> <domain>)",
    )
    p.add_argument("args", nargs="+")
    p.set_defaults(handler=cmd_domain_block)
    p = domain_sub.add_parser(
        "unblock", aliases=["allow"],
        help="Unblock a domain (1 arg = global, 2 args = <identifier> <domain>)",
    )
    p.add_argument("args", nargs="+")
    p.set_defaults(handler=cmd_domain_unblock)

    cfg = sub.add_parser("config", aliases=["cfg"], help="Manage CLI config")
    cfg_sub = cfg.add_subparsers(dest="config_command", required=True)
    p = cfg_sub.add_parser("init", help="Create config interactively")
    p.set_defaults(config_handler=cmd_config_init)
    p = cfg_sub.add_parser("set", help="Set a config value")
    p.add_argument("key")
    p.add_argument("value")
    p.set_defaults(config_handler=cmd_config_set)
    p = cfg_sub.add_parser("get", help="Show config values")
    p.add_argument("key", nargs="?")
    p.set_defaults(config_handler=cmd_config_get)
    p = cfg_sub.add_parser("path", help="Print config file path")
    p.set_defaults(config_handler=cmd_config_path)

    return parser


def main(
    argv: list[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    transport: httpx.BaseTransport | None = None,
) -> int:
    env = os.environ if env is None else env
    args = build_parser().parse_args(argv)

    try:
        config_handler = getattr(args, "config_handler", None)
        if config_handler is not None:
            config_handler(args, env)
            return 0

        config = load_config(env)
        url = args.url or env.get("TUNNEL_URL") or config.get("url") or DEFAULT_URL
        key = args.key or env.get("ADMIN_API_KEY") or config.get("key")
        if not key:
            raise CliError(
                "Error: Admin API key is required. Use --key, set ADMIN_API_KEY, "
                "or run `phtun config set key <value>`."
            )

        client = AdminClient(url, key, transport=transport)
        try:
            args.handler(client, args)
        finally:
            client.close()
    except CliError as e:
        print(str(e), file=sys.stderr)
        return 1
    except tomllib.TOMLDecodeError as e:
        print(f"Error: invalid config file {get_config_path(env)}: {e}", file=sys.stderr)
        return 1
    except EOFError:
        print("\nAborted.", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
