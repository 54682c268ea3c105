"""CLI entrypoint for mintwright."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Collection

from .assembler import build
from .catalog import dump_definition, load_catalog
from .config import load_context
from .errors import MintwrightError
from .rules import rule_to_dict


def _parse_pairs(
    items: list[str] | None,
    flag: str,
    raw_names: Collection[str] = (),
) -> dict[str, Any]:
    """Parse name=value pairs as JSON, keeping ``raw_names`` (addresses) as text."""
    out: dict[str, Any] = {}
    for item in items or []:
        if "=" not in item:
            raise ValueError(f"{flag} expects name=value, got {item!r}")
        name, raw = item.split("=", 1)
        name = name.strip()
        if not name:
            raise ValueError(f"{flag} expects name=value, got {item!r}")
        if name in raw_names:
            out[name] = raw.strip()
            continue
        try:
            out[name] = json.loads(raw)
        except json.JSONDecodeError:
            out[name] = raw
    return out


def _load(args: argparse.Namespace):
    return load_catalog(Path(args.catalog) if args.catalog else None)


def _cmd_list(args: argparse.Namespace) -> int:
    catalog = _load(args)
    for definition in catalog:
        line = f"{definition.name:32} {list(definition.discriminator)}"
        if definition.docs:
            line += f"  {definition.docs}"
        print(line)
    return 0


def _flags(slot) -> str:
    parts = []
    if slot.writable:
        parts.append("w")
    if slot.signer is True:
        parts.append("s")
    elif slot.signer:
        parts.append("s?")
    return ",".join(parts) or "-"


def _cmd_show(args: argparse.Namespace) -> int:
    catalog = _load(args)
    definition = catalog[args.name]
    table = definition.table
    print(f"{definition.name} ({catalog.name} {table.program_id})")
    if definition.docs:
        print(definition.docs)
    print(f"discriminator: {list(definition.discriminator)}")
    print("\naccounts:")
    for slot in table.accounts:
        rule = json.dumps(rule_to_dict(slot.rule), default=str) if slot.rule is not None else "-"
        need = "required" if slot.required else "optional"
        print(f"  {slot.index:>2} {slot.name:26} {_flags(slot):5} {need:8} {rule}")
    print("\narguments:")
    for slot in table.arguments:
        if slot.name == "discriminator":
            continue
        rule = json.dumps(rule_to_dict(slot.rule), default=str) if slot.rule is not None else "-"
        need = "required" if slot.required else "optional"
        extra = " (extra)" if slot.extra else ""
        print(f"     {slot.name:26} {slot.codec or 'bytes':28} {need:8} {rule}{extra}")
    print(f"\nresolution order: {', '.join(table.order)}")
    return 0


def _cmd_resolve(args: argparse.Namespace) -> int:
    catalog = _load(args)
    definition = catalog[args.name]
    context = load_context(
        Path(args.config) if args.config else None,
        rpc_url=args.rpc_url,
        identity=args.identity,
        payer=args.payer,
        offline=args.offline,
    )
    addresses = {slot.name for slot in definition.table.slots if slot.is_account or slot.codec == "pubkey"}
    resolved = build(definition, _parse_pairs(args.set, "--set", addresses), context)
    if args.json:
        print(json.dumps(resolved.to_dict(), indent=2))
        return 0
    print(f"program: {resolved.program_id}")
    print("accounts:")
    for acct in resolved.accounts:
        flags = ("w" if acct.writable else "") + ("s" if acct.signer else "")
        print(f"  {acct.name:26} {str(acct.address):44} {flags}")
    print(f"signers: {', '.join(str(key) for key in resolved.signers) or '-'}")
    print(f"data: {resolved.data.hex()}")
    print(f"storage delta: {resolved.storage_delta} bytes")
    return 0


def _cmd_split(args: argparse.Namespace) -> int:
    catalog = _load(args)
    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)
    names = args.names or catalog.names()
    for name in names:
        definition = catalog[name]
        path = out_dir / f"{definition.name}.toml"
        path.write_text(dump_definition(definition, catalog.name))
        print(f"Wrote {path}")
    return 0


def _cmd_pda(args: argparse.Namespace) -> int:
    catalog = _load(args)
    spec = catalog.pdas.get(args.name)
    addresses = {seed.name for seed in spec.seeds if seed.encoding == "pubkey"} if spec is not None else set()
    address = catalog.derive_pda(args.name, _parse_pairs(args.seed, "--seed", addresses))
    print(address)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog=os.path.basename(sys.argv[0]))
    parser.add_argument("--catalog", help="Program file (default: bundled Token Metadata)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log each resolution step")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_list = sub.add_parser("list", help="List instructions")
    p_list.set_defaults(func=_cmd_list)

    p_show = sub.add_parser("show", help="Print an instruction's slots and default rules")
    p_show.add_argument("name", help="Instruction name, e.g. createV1")
    p_show.set_defaults(func=_cmd_show)

    p_resolve = sub.add_parser("resolve", help="Resolve and assemble an instruction")
    p_resolve.add_argument("name", help="Instruction name, e.g. mintV1")
    p_resolve.add_argument(
        "--set",
        action="append",
        metavar="SLOT=VALUE",
        help="Caller value; account and pubkey VALUEs are addresses, others are parsed as JSON when possible (repeatable)",
    )
    p_resolve.add_argument("--identity", help="Keypair file or address used as identity")
    p_resolve.add_argument("--payer", help="Keypair file or address used as payer")
    p_resolve.add_argument("--config", help="Client TOML with [client] and [programs]")
    p_resolve.add_argument("--rpc-url", help="RPC endpoint for network resolvers")
    p_resolve.add_argument("--offline", action="store_true", help="Never contact an RPC endpoint")
    p_resolve.add_argument("--json", action="store_true", help="Emit the result as JSON")
    p_resolve.set_defaults(func=_cmd_resolve)

    p_split = sub.add_parser("split", help="Write concrete instructions as standalone program files")
    p_split.add_argument("names", nargs="*", help="Instructions to write (default: all)")
    p_split.add_argument("--out", required=True, help="Output directory")
    p_split.set_defaults(func=_cmd_split)

    p_pda = sub.add_parser("pda", help="Derive a named address")
    p_pda.add_argument("name", help="PDA name, e.g. metadata")
    p_pda.add_argument("--seed", action="append", metavar="SEED=VALUE", help="Seed value (repeatable)")
    p_pda.set_defaults(func=_cmd_pda)

    args = parser.parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")
    try:
        return args.func(args)
    except FileNotFoundError as exc:
        print(str(exc))
        return 1
    except KeyError as exc:
        print(exc.args[0] if exc.args else str(exc))
        return 1
    except (MintwrightError, ValueError) as exc:
        print(str(exc))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
