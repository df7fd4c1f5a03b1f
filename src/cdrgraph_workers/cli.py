#!/usr/bin/env python3
"""
CLI tool for CDRGraph workers

This provides a command-line interface for:
- Ingesting CSV/XLS/XLSX call detail record exports
- Building the communication network of an ingested upload

Events are kept in an in-memory store for the lifetime of the command.
"""

import asyncio
import argparse
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Tuple

from .analytics.network_analysis import NetworkAnalyzer, NetworkQuery
from .pipeline.ingestion_pipeline import IngestionPipeline
from .utils.event_store import InMemoryEventStore
from .utils.log_config import configure_logging


def read_files(paths: List[str]) -> List[Tuple[str, bytes]]:
    files = []
    for path in paths:
        file_path = Path(path)
        if not file_path.exists():
            raise FileNotFoundError(f"File {file_path} does not exist")
        files.append((file_path.name, file_path.read_bytes()))
    return files


def write_output(document: Dict[str, Any], output: str = None) -> None:
    text = json.dumps(document, indent=2, default=str)
    if output:
        Path(output).write_text(text)
        print(f"Results written to {output}")
    else:
        print(text)


def parse_datetime(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid ISO datetime: {value}")


async def ingest_command(args) -> int:
    store = InMemoryEventStore()
    pipeline = IngestionPipeline(store)
    result = await pipeline.ingest_upload(read_files(args.files), args.upload_id)

    document = result.to_dict()
    if args.network:
        analyzer = NetworkAnalyzer(store)
        network = await analyzer.analyze(build_query(args, result.upload_id))
        document["network"] = network.to_dict()

    write_output(document, args.output)
    return 0


async def network_command(args) -> int:
    store = InMemoryEventStore()
    pipeline = IngestionPipeline(store)
    upload = await pipeline.ingest_upload(read_files(args.files), args.upload_id)

    analyzer = NetworkAnalyzer(store)
    network = await analyzer.analyze(build_query(args, upload.upload_id))
    write_output(network.to_dict(), args.output)
    return 0


def build_query(args, upload_id: str) -> NetworkQuery:
    return NetworkQuery(
        upload_id=upload_id,
        start=args.start,
        end=args.end,
        event_type=args.event_type,
        min_edge_weight=args.min_edge_weight,
        limit_nodes=args.limit_nodes,
        limit_edges=args.limit_edges,
    )


def add_network_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('--from', dest='start', type=parse_datetime, help='Start of time range (ISO)')
    parser.add_argument('--to', dest='end', type=parse_datetime, help='End of time range (ISO)')
    parser.add_argument('--event-type', default='all', help='all, call, sms, data or unknown')
    parser.add_argument('--min-edge-weight', type=int, default=1, help='Minimum events per edge')
    parser.add_argument('--limit-nodes', type=int, help='Keep the top N nodes by weighted degree')
    parser.add_argument('--limit-edges', type=int, help='Keep the N heaviest edges')


def setup_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='CDRGraph workers CLI',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('--log-level', help='Log level (defaults to CDRGRAPH_LOG_LEVEL)')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    ingest_parser = subparsers.add_parser('ingest', help='Ingest CDR files')
    ingest_parser.add_argument('files', nargs='+', help='CSV, XLS or XLSX files')
    ingest_parser.add_argument('--upload-id', help='Upload id (generated when omitted)')
    ingest_parser.add_argument('--network', action='store_true', help='Also build the network graph')
    ingest_parser.add_argument('--output', '-o', help='Output file for results (JSON)')
    add_network_arguments(ingest_parser)

    network_parser = subparsers.add_parser('network', help='Ingest CDR files and build the network graph')
    network_parser.add_argument('files', nargs='+', help='CSV, XLS or XLSX files')
    network_parser.add_argument('--upload-id', help='Upload id (generated when omitted)')
    network_parser.add_argument('--output', '-o', help='Output file for results (JSON)')
    add_network_arguments(network_parser)

    return parser


async def run(argv: List[str] = None) -> int:
    """Main CLI function"""
    parser = setup_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    configure_logging(args.log_level)

    try:
        if args.command == 'ingest':
            return await ingest_command(args)
        elif args.command == 'network':
            return await network_command(args)
        else:
            print(f"Unknown command: {args.command}")
            return 1

    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return 1
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {str(e)}")
        return 1


def main() -> None:
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
