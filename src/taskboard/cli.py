from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Optional

from loguru import logger
from rich.console import Console
from rich.table import Table

from .config import get_project_managers, load_board_config
from .server import create_app
from .server.capabilities import RoleCapabilityProvider
from .task_engine.authz import Actor
from .task_engine.engine import TaskEngine
from .task_engine.errors import MoveError
from .task_engine.model import COLUMN_ORDER, COLUMN_TITLES

_EXIT_CODES = {"not_found": 2, "forbidden": 3, "conflict": 4}


def _resolve_project_dir(project_dir: Optional[str]) -> Path:
    return Path(project_dir).expanduser().resolve() if project_dir else Path.cwd().resolve()


def _engine(project_dir: Optional[str]) -> TaskEngine:
    root = _resolve_project_dir(project_dir)
    config, err = load_board_config(root)
    if err:
        logger.warning("Board config unreadable, using defaults: {}", err)
    return TaskEngine.from_project_dir(root, RoleCapabilityProvider(get_project_managers(config)))


def _fail(exc: MoveError) -> int:
    sys.stderr.write(json.dumps(exc.to_detail()) + '\n')
    return _EXIT_CODES.get(exc.error_kind, 1)


def _board(args: argparse.Namespace) -> int:
    engine = _engine(args.project_dir)
    columns = engine.get_board(args.project_id)
    if args.json:
        payload = {status.value: [t.to_dict() for t in tasks] for status, tasks in columns.items()}
        sys.stdout.write(json.dumps({'project_id': args.project_id, 'columns': payload}, indent=2) + '\n')
        return 0

    table = Table(title=f"Board: {args.project_id}")
    for status in COLUMN_ORDER:
        table.add_column(f"{COLUMN_TITLES[status]} ({len(columns[status])})")
    depth = max((len(tasks) for tasks in columns.values()), default=0)
    for row in range(depth):
        cells = []
        for status in COLUMN_ORDER:
            tasks = columns[status]
            cells.append(f"{tasks[row].title} [dim]{tasks[row].id}[/dim]" if row < len(tasks) else "")
        table.add_row(*cells)
    Console().print(table)
    return 0


def _move(args: argparse.Namespace) -> int:
    engine = _engine(args.project_dir)
    actor = Actor(id=args.actor, role=args.role.upper())
    try:
        result = engine.move_task(actor, args.task_id, args.status, args.index)
    except MoveError as exc:
        return _fail(exc)
    sys.stdout.write(json.dumps(result.to_dict(), indent=2) + '\n')
    return 0


def _task_register(args: argparse.Namespace) -> int:
    engine = _engine(args.project_dir)
    try:
        task = engine.register_task(
            args.project_id,
            args.title,
            status=args.status,
            assignee_id=args.assignee,
            priority=args.priority,
        )
    except ValueError as exc:
        sys.stderr.write(str(exc) + '\n')
        return 1
    sys.stdout.write(json.dumps({'task': task.to_dict()}, indent=2) + '\n')
    return 0


def _task_remove(args: argparse.Namespace) -> int:
    engine = _engine(args.project_dir)
    removed = engine.remove_task(args.task_id)
    sys.stdout.write(json.dumps({'removed': removed, 'task_id': args.task_id}) + '\n')
    return 0 if removed else 2


def _server(args: argparse.Namespace) -> int:
    import uvicorn

    app = create_app(project_dir=_resolve_project_dir(args.project_dir))
    uvicorn.run(app, host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Task board ordering engine')
    parser.add_argument('--project-dir', default=None, help='Directory holding .taskboard/ (default: current working directory)')
    subparsers = parser.add_subparsers(dest='command', required=True)

    server = subparsers.add_parser('server', help='Start the board API server')
    server.add_argument('--host', default='127.0.0.1')
    server.add_argument('--port', default=8000, type=int)
    server.add_argument('--reload', action='store_true')
    server.set_defaults(func=_server)

    board = subparsers.add_parser('board', help='Show a project board')
    board.add_argument('project_id')
    board.add_argument('--json', action='store_true')
    board.set_defaults(func=_board)

    move = subparsers.add_parser('move', help='Move a task to a column position')
    move.add_argument('task_id')
    move.add_argument('status', choices=[s.value for s in COLUMN_ORDER])
    move.add_argument('--index', type=int, default=None, help='Target position (default: end of column)')
    move.add_argument('--actor', default='admin')
    move.add_argument('--role', default='ADMIN')
    move.set_defaults(func=_move)

    task = subparsers.add_parser('task', help='Track task existence')
    task_sub = task.add_subparsers(dest='task_cmd', required=True)
    treg = task_sub.add_parser('register', help='Register a created task at the end of its column')
    treg.add_argument('project_id')
    treg.add_argument('title')
    treg.add_argument('--status', default='NEW', choices=[s.value for s in COLUMN_ORDER])
    treg.add_argument('--assignee', default=None)
    treg.add_argument('--priority', default='MEDIUM', choices=['LOW', 'MEDIUM', 'HIGH', 'CRITICAL'])
    treg.set_defaults(func=_task_register)
    trm = task_sub.add_parser('remove', help='Forget a deleted task')
    trm.add_argument('task_id')
    trm.set_defaults(func=_task_remove)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, 'func', None)
    if handler is None:
        parser.print_help()
        return 1
    return int(handler(args) or 0)


if __name__ == '__main__':
    raise SystemExit(main())
