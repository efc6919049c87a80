from __future__ import annotations

import argparse
from pathlib import Path

from infra_provisioner.config import apply, load, plan


def _progress(change: object, event: str) -> None:
    address = getattr(change, "address", "unknown")
    if event == "start":
        print(f"[apply:start]  {address}")
    elif event == "done":
        print(f"[apply:done]   {address}")
    else:
        print(f"[apply:failed] {address}")


def _parse_vars(values: list[str]) -> dict[str, str]:
    out: dict[str, str] = {}
    for item in values:
        name, _, value = item.partition("=")
        out[name] = value
    return out


def main() -> None:
    parser = argparse.ArgumentParser(description="Plan/apply an infra-provisioner stack via Python")
    parser.add_argument(
        "--config",
        default=str(Path(__file__).parent.parent / "ecommerce" / "infra.yaml"),
        help="Path to config file",
    )
    parser.add_argument("--var", action="append", default=[], help="NAME=VALUE")
    parser.add_argument("--apply", action="store_true", help="Apply the generated plan")
    parser.add_argument("--destroy", action="store_true", help="Plan destruction of the stack")
    parser.add_argument(
        "--no-refresh",
        action="store_true",
        help="Skip refresh during plan",
    )
    args = parser.parse_args()

    config = load(Path(args.config), variables=_parse_vars(args.var))

    plan_obj = plan(config, destroy=args.destroy, refresh=not args.no_refresh)
    print("Plan summary:", plan_obj.summary())
    for change in plan_obj.changes:
        print(f"- {change.action.value:7} {change.address}")

    if args.apply:
        result = apply(plan_obj, config, progress=_progress)
        print("Apply summary:", result.summary())


if __name__ == "__main__":
    main()
