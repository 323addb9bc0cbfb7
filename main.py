#!/usr/bin/env python3
"""
Canary verdict engine - run one analysis and print the measurement as JSON.

The rollout controller normally drives the engine through its plugin host; this entry
point runs the same measurement pipeline once, for local checks against a cluster.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Optional

#
# NOTE: Keep canary imports lazy (inside functions) so `--help` works without the
# SDK dependencies installed.
#


def _load_plugin_config(raw: Optional[str]) -> Any:
    """Plugin config from inline JSON, or from a file when prefixed with '@'."""
    if not raw:
        return None
    if raw.startswith("@"):
        return Path(raw[1:]).read_text(encoding="utf-8")
    return raw


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Analyze stable vs canary pod logs and print the resulting measurement.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python main.py --namespace shop --config '{\"model\": \"gemini-2.0-flash\"}'\n"
            "  python main.py --namespace shop --config @metric.json\n"
        ),
    )
    parser.add_argument("--namespace", required=True, help="Namespace of the stable and canary pods")
    parser.add_argument("--config", help="Plugin configuration JSON (or @path/to/file.json)")
    parser.add_argument("--secrets-dir", help="Directory with mounted secret files (default: /etc/secrets)")
    args = parser.parse_args()

    from canary.core.config import load_engine_config, validate_engine_config
    from canary.core.errors import ConfigurationError
    from canary.core.logging_setup import configure_logging
    from canary.pipeline.pipeline import build_engine, run_measurement

    config = load_engine_config(args.secrets_dir)
    configure_logging(config.log_level)
    try:
        validate_engine_config(config)
        engine = build_engine(config)
    except ConfigurationError as e:
        print(f"configuration error: {e}", file=sys.stderr)
        return 2

    measurement = run_measurement(
        engine, namespace=args.namespace, plugin_config=_load_plugin_config(args.config)
    )
    print(json.dumps(measurement.model_dump(mode="json"), indent=2, sort_keys=False))
    return 0 if measurement.phase != "Error" else 1


if __name__ == "__main__":
    sys.exit(main())
