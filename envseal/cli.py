"""
envseal CLI — entry point for all operations.

Usage:
    envseal activate            # Run the activation pipeline (rebuild hook)
    envseal identity init       # Generate this host's keypair
    envseal identity show       # Print this host's public key
    envseal bundle set B F      # Seal a value into bundle B, field F
    envseal bundle show B       # List a bundle's fields and recipients
    envseal policy check        # Dry-run: bundles needing re-seal
    envseal policy reseal       # Re-seal drifted bundles for the current policy
    envseal status              # Show paths and state
    envseal version             # Show version
"""

from __future__ import annotations

import argparse
import logging
import sys

from envseal.errors import EnvsealError


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="envseal",
        description="envseal — per-host encrypted secrets and shell environment bootstrap.",
    )
    parser.add_argument("--version", action="store_true", help="Show version and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command")

    # activate
    act_parser = subparsers.add_parser("activate", help="Run the activation pipeline")
    act_parser.add_argument(
        "--host-config", type=str, help="Host declaration (default: $ENVSEAL_HOST_CONFIG)"
    )

    # identity
    id_parser = subparsers.add_parser("identity", help="Manage this host's identity")
    id_sub = id_parser.add_subparsers(dest="identity_command")
    id_init = id_sub.add_parser("init", help="Generate the host keypair (idempotent)")
    id_init.add_argument("--label", type=str, help="Host label (default: short hostname)")
    id_sub.add_parser("show", help="Print the host's public key")

    # bundle
    b_parser = subparsers.add_parser("bundle", help="Manage secret bundles")
    b_sub = b_parser.add_subparsers(dest="bundle_command")
    b_set = b_sub.add_parser("set", help="Seal a value into a bundle field")
    b_set.add_argument("bundle", help="Bundle id (path under the bundles dir, no .yaml)")
    b_set.add_argument("field", help="Field name")
    b_set.add_argument(
        "--value-stdin", action="store_true", help="Read the value from stdin instead of prompting"
    )
    b_show = b_sub.add_parser("show", help="List fields and recipients (never values)")
    b_show.add_argument("bundle", help="Bundle id")

    # policy
    p_parser = subparsers.add_parser("policy", help="Recipient policy")
    p_sub = p_parser.add_subparsers(dest="policy_command")
    p_sub.add_parser("check", help="List bundles whose recipients drifted from the policy")
    p_reseal = p_sub.add_parser("reseal", help="Re-seal bundles for the current policy")
    p_reseal.add_argument("bundles", nargs="*", help="Bundle ids (default: every drifted bundle)")
    p_reseal.add_argument("--dry-run", action="store_true", help="Report without writing")

    # status
    subparsers.add_parser("status", help="Show paths and state")

    # version
    subparsers.add_parser("version", help="Show version")

    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    if args.version or args.command == "version":
        from envseal import __version__

        print(f"envseal {__version__}")
        return 0

    try:
        if args.command == "activate":
            return _cmd_activate(args)
        elif args.command == "identity":
            return _cmd_identity(args)
        elif args.command == "bundle":
            return _cmd_bundle(args)
        elif args.command == "policy":
            return _cmd_policy(args)
        elif args.command == "status":
            return _cmd_status(args)
        else:
            parser.print_help()
            return 0
    except EnvsealError as e:
        print(f"Error [{e.stage}]: {e}", file=sys.stderr)
        return 1


def _setup_logging(verbose: bool) -> None:
    from envseal.config import get_config

    level = "DEBUG" if verbose else get_config().log_level
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _cmd_activate(args: argparse.Namespace) -> int:
    from envseal.activation.declared import load_declaration
    from envseal.activation.orchestrator import Orchestrator

    plan = load_declaration(args.host_config)
    report = Orchestrator(plan).run()
    out = sys.stdout if report.ok else sys.stderr
    for line in report.summary_lines():
        print(line, file=out)
    return report.exit_code


def _cmd_identity(args: argparse.Namespace) -> int:
    from envseal.config import get_config
    from envseal.vault.identity import init_identity, load_identity

    cfg = get_config()
    sub = getattr(args, "identity_command", None)

    if sub == "init":
        existed = cfg.identity_file.exists()
        identity = init_identity(cfg.identity_file, args.label or cfg.host)
        if existed:
            print(f"Identity already exists at {identity.private_key_path}")
        else:
            print(f"Identity created at {identity.private_key_path}")
        print(f"  Host:       {identity.host_label}")
        print(f"  Public key: {identity.public_key}")
        if not existed:
            print()
            print(f"Add it to {cfg.policy_file} under 'hosts:', then run 'envseal policy reseal'")
            print("on a host that is already a recipient.")
        return 0

    elif sub == "show":
        identity = load_identity(cfg.identity_file)
        print(identity.public_key)
        return 0

    else:
        print("Usage: envseal identity {init|show}")
        return 0


def _cmd_bundle(args: argparse.Namespace) -> int:
    from envseal.config import get_config
    from envseal.vault.bundle import bundle_path, load_bundle
    from envseal.vault.identity import load_identity
    from envseal.vault.policy import RecipientPolicy

    cfg = get_config()
    sub = getattr(args, "bundle_command", None)

    if sub == "set":
        policy = RecipientPolicy.load(cfg.policy_file, cfg.bundles_dir)
        identity = load_identity(cfg.identity_file)
        if args.value_stdin:
            value = sys.stdin.read()
        else:
            import getpass

            value = getpass.getpass(f"Value for {args.bundle}/{args.field}: ")
        bundle = policy.set_field(args.bundle, args.field, value.rstrip("\n"), identity)
        print(
            f"Sealed {args.bundle}/{args.field} for {len(bundle.stanzas)} recipient(s) "
            f"-> {bundle_path(cfg.bundles_dir, args.bundle)}"
        )
        return 0

    elif sub == "show":
        path = bundle_path(cfg.bundles_dir, args.bundle)
        bundle = load_bundle(path, args.bundle)
        policy = None
        if cfg.policy_file.exists():
            policy = RecipientPolicy.load(cfg.policy_file, cfg.bundles_dir)
        print(f"  Bundle:     {bundle.bundle_id}")
        print(f"  File:       {path}")
        if bundle.lastmodified is not None:
            print(f"  Modified:   {bundle.lastmodified.isoformat()}")
        print(f"  Fields:     {', '.join(bundle.field_names) or '(none)'}")
        print("  Recipients:")
        for key in sorted(bundle.recipients_used):
            print(f"    {policy.label(key) if policy else key}")
        if policy is not None:
            report = policy.drift(bundle, path)
            if report.needs_reseal:
                print(f"  Drift:      +{len(report.added)}/-{len(report.removed)} "
                      f"(run 'envseal policy reseal {bundle.bundle_id}')")
        return 0

    else:
        print("Usage: envseal bundle {set|show}")
        return 0


def _cmd_policy(args: argparse.Namespace) -> int:
    from envseal.config import get_config
    from envseal.vault.policy import RecipientPolicy

    cfg = get_config()
    policy = RecipientPolicy.load(cfg.policy_file, cfg.bundles_dir)
    sub = getattr(args, "policy_command", None)

    if sub == "check":
        reports = policy.plan_reseal()
        if not reports:
            print(f"No bundles under {cfg.bundles_dir}")
            return 0
        failing = 0
        for r in reports:
            if r.error is not None:
                failing += 1
                print(f"  x {r.bundle_id}: {r.error}")
            elif r.needs_reseal:
                failing += 1
                print(f"  ! {r.bundle_id}: needs re-seal ({_describe(policy, r)})")
            else:
                print(f"  + {r.bundle_id}: up to date")
        print()
        print(f"{failing} of {len(reports)} bundle(s) need attention.")
        return 1 if failing else 0

    elif sub == "reseal":
        from envseal.vault.identity import load_identity

        bundle_ids = args.bundles or [r.bundle_id for r in policy.plan_reseal() if r.needs_reseal]
        if not bundle_ids:
            print("Nothing to re-seal.")
            return 0
        identity = None if args.dry_run else load_identity(cfg.identity_file)
        for bundle_id in bundle_ids:
            report = policy.reseal(bundle_id, identity, dry_run=args.dry_run)
            verb = "Would re-seal" if args.dry_run else "Re-sealed"
            print(f"  {verb} {bundle_id} ({_describe(policy, report)})")
        return 0

    else:
        print("Usage: envseal policy {check|reseal}")
        return 0


def _describe(policy, report) -> str:
    parts = [f"+{policy.label(k)}" for k in sorted(report.added)]
    parts += [f"-{policy.label(k)}" for k in sorted(report.removed)]
    return ", ".join(parts) or "no change"


def _cmd_status(args: argparse.Namespace) -> int:
    from envseal import __version__
    from envseal.config import get_config
    from envseal.vault.bundle import iter_bundle_paths

    cfg = get_config()
    print(f"envseal v{__version__}")
    print()
    print(f"  Host:         {cfg.host}")

    print(f"  Identity:     {cfg.identity_file}")
    try:
        from envseal.vault.identity import load_identity

        print(f"                {load_identity(cfg.identity_file).public_key}")
    except EnvsealError as e:
        print(f"                MISSING — {e}")

    bundles = iter_bundle_paths(cfg.bundles_dir) if cfg.bundles_dir.is_dir() else []
    print(f"  Bundles:      {cfg.bundles_dir} ({len(bundles)} bundle(s))")
    policy_state = "present" if cfg.policy_file.exists() else "missing"
    print(f"  Policy:       {cfg.policy_file} ({policy_state})")
    decl_state = "present" if cfg.host_config.exists() else "missing"
    print(f"  Declaration:  {cfg.host_config} ({decl_state})")
    print(f"  Runtime dir:  {cfg.runtime_dir}")
    print(f"  Cache dir:    {cfg.cache_dir}")
    return 0
