from __future__ import annotations

import argparse
import sys
import time
from concurrent.futures import Future
from decimal import Decimal
from pathlib import Path

from .config import load_config
from .errors import ConfigError, DataSourceError, RemoteConflictError, RemoteError
from .local_store import LocalListStore
from .logging_config import configure_logging, get_logger
from .models import FUND_CODE_PATTERN, FundQuote, RemoteCredentials, SearchHit
from .orchestrator import WatchlistSession, build_session

log = get_logger(__name__)


def _fmt(value: Decimal | None, digits: int) -> str:
    return "-" if value is None else f"{value:.{digits}f}"


def _format_change(value: Decimal | None) -> str:
    if value is None:
        return "-"
    return f"{value:+.2f}%"


def _format_record(q: FundQuote) -> str:
    return "\t".join(
        [
            q.code,
            q.name,
            _fmt(q.net_asset_value, 4),
            _fmt(q.estimated_value, 4),
            _format_change(q.estimated_change_percent),
            q.estimation_time or "-",
            f"净值日期{q.valuation_date}" if q.valuation_date else "-",
        ]
    )


def _format_hit(hit: SearchHit) -> str:
    mark = "✓" if hit.added else "+"
    return f"{mark}\t{hit.entry.code}\t{hit.entry.name}\t{hit.entry.category}"


def format_table(session: WatchlistSession, quotes: list[FundQuote]) -> list[str]:
    if not session.funds:
        return ["自选列表为空，使用 add 命令添加基金"]

    rows = [f"自选基金 {len(session.funds)} 只（来源: {session.source}）"]
    rows.extend(_format_record(q) for q in quotes)
    missing = sorted(set(session.funds) - {q.code for q in quotes})
    if missing:
        rows.append(f"暂无估值: {', '.join(missing)}")
    return rows


def _print_rows(rows: list[str]) -> None:
    for row in rows:
        print(row)


def _wait_for_sync(future: Future[str] | None) -> None:
    if future is None:
        return
    try:
        future.result()
    except RemoteConflictError as exc:
        print(f"同步冲突（远程文件已被修改），请稍后执行 sync: {exc}", file=sys.stderr)
    except (RemoteError, DataSourceError) as exc:
        print(f"同步失败: {exc}", file=sys.stderr)


def cmd_list(session: WatchlistSession, args: argparse.Namespace) -> int:
    _print_rows(format_table(session, session.load()))
    return 0


def cmd_refresh(session: WatchlistSession, args: argparse.Namespace) -> int:
    _print_rows(format_table(session, session.refresh()))
    print("刷新成功")
    return 0


def cmd_add(session: WatchlistSession, args: argparse.Namespace) -> int:
    code = args.code.strip()
    if not FUND_CODE_PATTERN.fullmatch(code):
        print(f"无效基金代码: {code}", file=sys.stderr)
        return 1
    session.load()
    if code in session.document:
        print(f"{code} 已在自选列表中")
        return 0
    future = session.add_fund(code)
    print("添加成功")
    _print_rows(format_table(session, session.quotes))
    _wait_for_sync(future)
    return 0


def cmd_remove(session: WatchlistSession, args: argparse.Namespace) -> int:
    code = args.code.strip()
    session.load()
    if code not in session.document:
        print(f"{code} 不在自选列表中")
        return 0
    future = session.remove_fund(code)
    print("已删除")
    _print_rows(format_table(session, session.quotes))
    _wait_for_sync(future)
    return 0


def _print_hits(hits: list[SearchHit]) -> None:
    if not hits:
        print("未找到相关基金")
        return
    _print_rows([_format_hit(h) for h in hits])


def _interactive_search(session: WatchlistSession, args: argparse.Namespace) -> int:
    debouncer = session.debounced_search(
        lambda _keyword, hits: _print_hits(hits),
        limit=args.limit,
        delay=args.debounce,
    )
    print("输入代码、名称或拼音搜索，Ctrl-D 退出")
    for line in sys.stdin:
        debouncer.submit(line)
    debouncer.join()
    return 0


def cmd_search(session: WatchlistSession, args: argparse.Namespace) -> int:
    if args.keyword is None:
        return _interactive_search(session, args)
    _print_hits(session.search(args.keyword, limit=args.limit))
    return 0


def cmd_sync(session: WatchlistSession, args: argparse.Namespace) -> int:
    try:
        session.sync_remote()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    except RemoteConflictError as exc:
        print(f"同步冲突（远程文件已被修改），请重试: {exc}", file=sys.stderr)
        return 1
    except (RemoteError, DataSourceError) as exc:
        print(f"同步失败: {exc}", file=sys.stderr)
        return 1
    print("同步成功")
    return 0


def cmd_watch(session: WatchlistSession, args: argparse.Namespace) -> int:
    quotes = session.load()
    while True:
        ts = time.strftime("%Y-%m-%d %H:%M:%S")
        print(f"-- {ts}")
        _print_rows(format_table(session, quotes))
        if args.once:
            return 0
        time.sleep(args.interval_seconds)
        quotes = session.refresh()


COMMANDS = {
    "list": cmd_list,
    "refresh": cmd_refresh,
    "add": cmd_add,
    "remove": cmd_remove,
    "search": cmd_search,
    "sync": cmd_sync,
    "watch": cmd_watch,
}


def cmd_configure(storage_path: Path, args: argparse.Namespace) -> int:
    credentials = RemoteCredentials(token=args.token.strip(), repo=args.repo.strip(), path=args.path.strip())
    if not credentials.is_complete:
        print("GitHub Token 和仓库地址不能为空", file=sys.stderr)
        return 1
    LocalListStore(storage_path).save_credentials(credentials)
    print(f"已保存 GitHub 配置: {credentials.repo}/{credentials.path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="自选基金实时估值")
    p.add_argument("--config", default="", help="YAML 配置文件路径")
    p.add_argument("--storage", default="", help="本地存储文件路径，默认 ~/.fund_watchlist/storage.json")
    p.add_argument("--proxy", default="", help="可选代理地址，例如 http://127.0.0.1:7890")
    p.add_argument("--log-level", default="", help="日志级别，例如 DEBUG/INFO/WARNING")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="加载自选列表并显示实时估值")
    sub.add_parser("refresh", help="刷新实时估值")

    add = sub.add_parser("add", help="添加基金到自选列表")
    add.add_argument("code", help="基金代码，例如 000001")

    remove = sub.add_parser("remove", help="从自选列表删除基金")
    remove.add_argument("code", help="基金代码")

    search = sub.add_parser("search", help="按代码、名称或拼音搜索基金")
    search.add_argument("keyword", nargs="?", help="省略时进入交互式搜索")
    search.add_argument("--limit", type=int, default=None, help="返回结果数量上限")
    search.add_argument("--debounce", type=float, default=None, help="交互式搜索防抖间隔（秒）")

    sub.add_parser("sync", help="把自选列表同步到 GitHub")

    configure = sub.add_parser("configure", help="保存 GitHub 同步配置")
    configure.add_argument("--token", required=True, help="GitHub Token")
    configure.add_argument("--repo", required=True, help="仓库，例如 zhangsan/fund-data")
    configure.add_argument("--path", default="data/funds.json", help="仓库内数据文件路径")

    watch = sub.add_parser("watch", help="按固定周期刷新估值")
    watch.add_argument("--interval-seconds", type=int, default=60, help="刷新周期（秒）")
    watch.add_argument("--once", action="store_true", help="只执行一次，便于联调")
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = load_config(
            Path(args.config) if args.config else None,
            storage_path=args.storage or None,
            proxy=args.proxy or None,
            log_level=args.log_level or None,
        )
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    configure_logging(config.log_level, json_output=config.log_json)

    if args.command == "configure":
        return cmd_configure(config.storage_path, args)

    if args.command == "search":
        if args.limit is None:
            args.limit = config.search_limit
        if args.debounce is None:
            args.debounce = config.search_debounce_seconds

    def report(exc: Exception) -> None:
        log.warning("background_sync_failed", error=str(exc))

    try:
        session = build_session(config, on_sync_error=report)
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    with session:
        return COMMANDS[args.command](session, args)


if __name__ == "__main__":
    sys.exit(main())
