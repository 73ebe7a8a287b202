# cli.py
import argparse
import os
import sys
from typing import List, Optional

from .cluster import ProviderCluster
from .config import load_config
from .errors import HarnessError
from .log import setup_logging
from .scenarios import SCENARIOS, run_all
from .workloads import build_basic, render_manifest


def _open_output(path: Optional[str]):
    if not path:
        return None
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    return open(path, "a", buffering=1)  # line-buffered


def _add_cluster_args(p: argparse.ArgumentParser):
    p.add_argument("--config", help="YAML file with harness settings.")
    p.add_argument("--kubeconfig", help="Path to kubeconfig (default: $KUBECONFIG, then in-cluster).")
    p.add_argument("--ca-file", help="Path to cluster CA file (default: $K8S_CA_FILE).")
    p.add_argument("--verify-ssl", type=lambda v: v.lower() in ("1", "true", "yes"),
                   default=None, help="Force SSL verification on/off. Default: client default.")
    p.add_argument("--namespace", help="Namespace the test pods are created in.")
    p.add_argument("--node-name", help="Name of the provider's node.")
    p.add_argument("--kubelet-port", type=int, help="Port of the provider's stats endpoint.")
    p.add_argument("--stats-url", help="Read /stats/summary from this URL instead of the pod proxy.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="provider-e2e",
                                     description="End-to-end checks for a virtual-kubelet provider.")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--log-file", help="Also write the log to this file.")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_run = sub.add_parser("run", help="Run scenarios and emit one JSON result per line.")
    _add_cluster_args(p_run)
    p_run.add_argument("--scenario", action="append", choices=sorted(SCENARIOS),
                       help="Scenario to run (repeatable). Default: all.")
    p_run.add_argument("--output", help="Also append results as NDJSON to this file.")
    p_run.add_argument("--skip-node-check", action="store_true",
                       help="Do not wait for the provider's node to be Ready first.")

    sub.add_parser("list", help="List scenario names.")

    p_render = sub.add_parser("render", help="Print the Pod manifest of a basic fixture.")
    p_render.add_argument("prefix")
    p_render.add_argument("images", nargs="+")
    p_render.add_argument("--namespace", default="default")
    p_render.add_argument("--node-name", default=None)
    return parser


def _run(args, cluster: Optional[ProviderCluster] = None) -> int:
    cfg = load_config(
        args.config,
        kubeconfig=args.kubeconfig,
        ca_file=args.ca_file,
        verify_ssl=args.verify_ssl,
        namespace=args.namespace,
        node_name=args.node_name,
        kubelet_port=args.kubelet_port,
        stats_url=args.stats_url,
    )
    if cluster is None:
        cluster = ProviderCluster(cfg)
    with cluster:
        if not args.skip_node_check:
            cluster.wait_until_node_ready()
        results = run_all(cluster, args.scenario)

    out_f = _open_output(args.output)
    try:
        for r in results:
            line = r.model_dump_json()
            if out_f:
                out_f.write(line + "\n")
            print(line)
    finally:
        if out_f:
            out_f.close()
    return 0 if all(r.passed for r in results) else 1


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=args.log_level, log_file=args.log_file)

    if args.cmd == "list":
        for name in SCENARIOS:
            print(name)
        return 0
    if args.cmd == "render":
        spec = build_basic(args.prefix, *args.images, namespace=args.namespace, node_name=args.node_name)
        print(render_manifest(spec), end="")
        return 0
    try:
        return _run(args)
    except HarnessError as e:
        print(f"provider-e2e: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
