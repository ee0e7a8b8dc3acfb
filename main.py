import argparse
import json
import logging
import sys

from core.app_context import AppContext
from core.config_loader import get_config
from core.exceptions import ServiceException
from database.init_db import init_db

logger = logging.getLogger(__name__)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def run_search(ctx: AppContext, args) -> None:
    search_id = ctx.sourcing_workflow.create_search(
        args.query,
        name=args.name,
        organization_id=args.organization,
        user_id=args.user
    )
    logger.info(f"Created search {search_id}")
    if args.no_start:
        _print_json({"searchId": search_id})
        return
    _print_json(ctx.sourcing_workflow.start(search_id))


def run_strategy(ctx: AppContext, args) -> None:
    """Drive one strategy in-process, without the queue."""
    result = ctx.strategy_workflow.run_to_completion(args.strategy_id)
    _print_json(result.to_dict())


def run_dispatch(ctx: AppContext, args) -> None:
    _print_json(ctx.dispatcher.dispatch(args.search_id, parallelism=args.parallelism, rescore=args.rescore))


def run_progress(ctx: AppContext, args) -> None:
    _print_json(ctx.progress.get_search_progress(args.search_id))


def run_credits(ctx: AppContext, args) -> None:
    ledger = ctx.credit_ledger
    if args.action == 'balance':
        _print_json({"organizationId": args.organization_id, "balance": ledger.get_balance(args.organization_id)})
    elif args.action == 'add':
        _print_json(ledger.add_credits(args.organization_id, args.user, args.amount, credit_type=args.credit_type).to_dict())
    elif args.action == 'deduct':
        _print_json(ledger.deduct_credits(args.organization_id, args.user, args.amount, credit_type=args.credit_type).to_dict())
    elif args.action == 'stats':
        stats = ledger.get_credit_stats(args.organization_id)
        stats['recent_transactions'] = [r.to_dict() for r in stats['recent_transactions']]
        _print_json(stats)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Candidate sourcing driver")
    parser.add_argument('--verbose', action='store_true', help='Debug logging')
    sub = parser.add_subparsers(dest='command', required=True)

    sub.add_parser('web', help='Run the API server')

    worker = sub.add_parser('worker', help='Run the queue worker')
    worker.add_argument('--burst', action='store_true', help='Process all and exit')

    sub.add_parser('init-db', help='Create database tables')

    search = sub.add_parser('search', help='Create a search and start sourcing')
    search.add_argument('query')
    search.add_argument('--name', default='')
    search.add_argument('--organization', default=None)
    search.add_argument('--user', default=None)
    search.add_argument('--no-start', action='store_true', help='Only create the search')

    strategy = sub.add_parser('run-strategy', help='Run one strategy to completion in-process')
    strategy.add_argument('strategy_id')

    dispatch = sub.add_parser('dispatch', help='Queue scoring for a search')
    dispatch.add_argument('search_id')
    dispatch.add_argument('--parallelism', type=int, default=None)
    dispatch.add_argument('--rescore', action='store_true')

    progress = sub.add_parser('progress', help='Show scoring progress of a search')
    progress.add_argument('search_id')

    credits = sub.add_parser('credits', help='Credit ledger operations')
    credits.add_argument('action', choices=['balance', 'add', 'deduct', 'stats'])
    credits.add_argument('organization_id')
    credits.add_argument('--amount', type=int, default=0)
    credits.add_argument('--user', default='cli')
    credits.add_argument('--credit-type', default='general')

    return parser


COMMANDS = {
    'search': run_search,
    'run-strategy': run_strategy,
    'dispatch': run_dispatch,
    'progress': run_progress,
    'credits': run_credits,
}


def main(argv=None):
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if args.command == 'web':
        from web.backend.app import main as run_web
        run_web()
        return
    if args.command == 'worker':
        from pipeline.worker import start_worker
        start_worker(burst=args.burst)
        return
    if args.command == 'init-db':
        init_db()
        return

    ctx = AppContext.build(get_config())
    try:
        COMMANDS[args.command](ctx, args)
    except ServiceException as e:
        logger.error(f"{e.__class__.__name__}: {e}")
        sys.exit(1)
    finally:
        ctx.close()


if __name__ == "__main__":
    main()
