"""CLI entry point: quillstore chapter organizer.

用法：
  quillstore novel-new "书名"          创建小说
  quillstore add 1 "第一章"            在小说 1 末尾添加章节
  quillstore tree 1                    查看章节树
  quillstore edit 3 -f draft.txt       保存章节正文（生成新版本）
  quillstore history 3                 查看版本历史
  quillstore backup data/copy.db       备份数据库
  quillstore --help                    查看所有命令
"""

import logging
import os
import sys
from pathlib import Path

# Ensure UTF-8 output on Windows to avoid GBK encoding errors with Rich
if sys.platform == "win32":
    os.environ.setdefault("PYTHONIOENCODING", "utf-8")

import click
from rich.table import Table

from chapters.service import ChapterService
from cli.theme import (
    get_console,
    app_header,
    command_panel,
    success_panel,
    chapter_tree,
    history_table,
    diff_panel,
)
from config.exceptions import (
    BrokenChainError,
    QuillStoreError,
    StorageFailureError,
)
from config.logging_config import setup_logging
from config.settings import Settings
from models.database import Database
from models.enums import ChapterKind
from models.novel import Novel

console = get_console()


def _init_logging(verbose: bool, settings: Settings):
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.INFO
    setup_logging(level=level, log_dir=settings.log_dir, console_enabled=verbose)


def _open(ctx) -> tuple[Database, ChapterService]:
    settings = ctx.obj["settings"]
    db = Database(settings.sqlite_db_path, timeout=settings.sqlite_timeout)
    return db, ChapterService(db, settings)


def _fail(error: QuillStoreError):
    """Print an error and exit; corruption and I/O failures are fatal."""
    if isinstance(error, (BrokenChainError, StorageFailureError)):
        console.print(f"[error]严重错误：{error}[/]")
        console.print("[warning]数据可能已损坏，请备份数据库后重启应用。[/]")
        sys.exit(2)
    console.print(f"[error]操作失败：{error}[/]")
    sys.exit(1)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, verbose):
    """quillstore：小说章节树与版本管理"""
    settings = Settings()
    _init_logging(verbose, settings)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


# ---------------------------------------------------------------------------
# novel commands
# ---------------------------------------------------------------------------

@cli.command(name="novel-new")
@click.argument("title")
@click.option("--author", "-a", default="", help="作者")
@click.pass_context
def novel_new(ctx, title, author):
    """创建新小说。"""
    db, _ = _open(ctx)
    try:
        novel_id = db.create_novel(Novel(title=title, author=author))
    except QuillStoreError as e:
        _fail(e)
    console.print(success_panel("小说已创建", f"ID: {novel_id}  标题: {title}"))


@cli.command()
@click.pass_context
def novels(ctx):
    """列出所有小说。"""
    db, _ = _open(ctx)
    try:
        rows = db.list_novels()
    except QuillStoreError as e:
        _fail(e)
    if not rows:
        console.print("[warning]暂无小说，使用 novel-new 创建[/]")
        return
    table = Table(show_header=True)
    table.add_column("ID", style="chapter.id", justify="right")
    table.add_column("标题")
    table.add_column("状态", style="muted")
    table.add_column("字数", justify="right")
    for n in rows:
        table.add_row(str(n.id), n.title, n.status.value, str(n.word_count))
    console.print(table)


@cli.command()
@click.argument("target", type=click.Path(dir_okay=False, path_type=Path))
@click.pass_context
def backup(ctx, target):
    """备份数据库到指定文件。"""
    db, _ = _open(ctx)
    try:
        path = db.backup(target)
    except QuillStoreError as e:
        _fail(e)
    console.print(success_panel("备份完成", str(path)))


# ---------------------------------------------------------------------------
# chapter structure commands
# ---------------------------------------------------------------------------

@cli.command()
@click.argument("novel_id", type=int)
@click.argument("title")
@click.option("--parent", "-p", "parent_id", default=None, type=int, help="父节点章节ID")
@click.option(
    "--kind", "-k",
    type=click.Choice([k.value for k in ChapterKind]),
    default=ChapterKind.CHAPTER.value,
    help="节点类型",
)
@click.pass_context
def add(ctx, novel_id, title, parent_id, kind):
    """在父节点末尾添加章节（默认添加到根层级）。"""
    _, service = _open(ctx)
    try:
        chapter = service.create(novel_id, title, parent_id, ChapterKind(kind))
    except QuillStoreError as e:
        _fail(e)
    console.print(f"[success]已创建章节 #{chapter.id}[/] {chapter.title}")


@cli.command()
@click.argument("chapter_id", type=int)
@click.option("--parent", "-p", "parent_id", default=None, type=int, help="新的父节点ID（省略则移到根层级）")
@click.option("--after", "-a", "after_id", default=None, type=int, help="放在该兄弟节点之后（省略则排在最前）")
@click.pass_context
def move(ctx, chapter_id, parent_id, after_id):
    """移动章节（连同子节点）。"""
    _, service = _open(ctx)
    console.print(command_panel("移动章节", {
        "章节": f"#{chapter_id}",
        "新父节点": f"#{parent_id}" if parent_id else "根层级",
        "位置": f"#{after_id} 之后" if after_id else "最前",
    }))
    try:
        tree = service.move(chapter_id, parent_id, after_id)
        chapter = service.get(chapter_id)
        title = service.db.require_novel(chapter.novel_id).title
    except QuillStoreError as e:
        _fail(e)
    console.print(chapter_tree(title, tree))


@cli.command()
@click.argument("chapter_id", type=int)
@click.option("--yes", "-y", is_flag=True, help="跳过确认")
@click.pass_context
def delete(ctx, chapter_id, yes):
    """永久删除章节、子节点及全部版本。"""
    _, service = _open(ctx)
    if not yes and not click.confirm(f"确认永久删除章节 #{chapter_id} 及其全部子节点？"):
        console.print("[warning]已取消[/]")
        return
    try:
        deleted = service.delete(chapter_id)
    except QuillStoreError as e:
        _fail(e)
    console.print(f"[success]已删除 {len(deleted)} 个章节[/]")


@cli.command()
@click.argument("chapter_id", type=int)
@click.option("--restore", "-r", "unarchive", is_flag=True, help="取消归档")
@click.pass_context
def archive(ctx, chapter_id, unarchive):
    """归档章节（连同子节点），或使用 -r 取消归档。"""
    _, service = _open(ctx)
    try:
        ids = service.unarchive(chapter_id) if unarchive else service.archive(chapter_id)
    except QuillStoreError as e:
        _fail(e)
    action = "取消归档" if unarchive else "归档"
    console.print(f"[success]已{action} {len(ids)} 个章节[/]")


@cli.command()
@click.argument("novel_id", type=int)
@click.option("--all", "-a", "include_archived", is_flag=True, help="包含已归档章节")
@click.pass_context
def tree(ctx, novel_id, include_archived):
    """显示小说章节树。"""
    db, service = _open(ctx)
    try:
        novel = db.require_novel(novel_id)
        chapters = service.tree(novel_id, include_archived)
    except QuillStoreError as e:
        _fail(e)
    console.print(app_header(novel.title))
    if not len(chapters):
        console.print("[muted]（暂无章节）[/]")
        return
    console.print(chapter_tree(f"{novel.title} · {novel.word_count}字", chapters))


# ---------------------------------------------------------------------------
# content and version commands
# ---------------------------------------------------------------------------

@cli.command()
@click.argument("chapter_id", type=int)
@click.option("--file", "-f", "source", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              default=None, help="从文件读取正文")
@click.option("--text", "-t", default=None, help="直接指定正文")
@click.option("--title", default=None, help="同时修改标题")
@click.option("--message", "-m", default="", help="版本说明")
@click.option("--auto", "is_auto_save", is_flag=True, help="标记为自动保存")
@click.pass_context
def edit(ctx, chapter_id, source, text, title, message, is_auto_save):
    """保存章节正文，生成新版本。"""
    if (source is None) == (text is None):
        raise click.UsageError("必须且只能指定 --file 或 --text 之一")
    content = source.read_text(encoding="utf-8") if source else text
    _, service = _open(ctx)
    try:
        revision = service.edit(chapter_id, content, message, is_auto_save, title)
    except QuillStoreError as e:
        _fail(e)
    console.print(
        f"[success]已保存[/] 版本 {revision.id} "
        f"[muted]({revision.version_type.value}, {revision.word_count}字)[/]"
    )


@cli.command()
@click.argument("chapter_id", type=int)
@click.pass_context
def history(ctx, chapter_id):
    """查看章节版本历史（最新在前）。"""
    _, service = _open(ctx)
    try:
        revisions = service.history(chapter_id)
        patterns = service.version_patterns(chapter_id)
    except QuillStoreError as e:
        _fail(e)
    console.print(history_table(revisions))
    console.print(
        f"[stat.label]共[/] {patterns.total_versions} [stat.label]个版本，"
        f"自动保存[/] {patterns.auto_save_count}[stat.label]，手动保存[/] {patterns.manual_save_count}"
    )


@cli.command()
@click.argument("revision_id", type=int)
@click.pass_context
def show(ctx, revision_id):
    """输出某个版本的完整正文。"""
    _, service = _open(ctx)
    try:
        text = service.reconstruct(revision_id)
    except QuillStoreError as e:
        _fail(e)
    click.echo(text, nl=False)


@cli.command()
@click.argument("chapter_id", type=int)
@click.argument("revision_id", type=int)
@click.option("--message", "-m", default="", help="版本说明")
@click.pass_context
def restore(ctx, chapter_id, revision_id, message):
    """恢复到历史版本（追加为新版本，不改写历史）。"""
    _, service = _open(ctx)
    try:
        revision = service.restore(chapter_id, revision_id, message)
    except QuillStoreError as e:
        _fail(e)
    console.print(f"[success]已恢复[/] 版本 {revision_id} → 新版本 {revision.id}")


@cli.command()
@click.argument("older_id", type=int)
@click.argument("newer_id", type=int)
@click.pass_context
def diff(ctx, older_id, newer_id):
    """比较两个版本。"""
    _, service = _open(ctx)
    try:
        comparison = service.compare_revisions(older_id, newer_id)
    except QuillStoreError as e:
        _fail(e)
    console.print(diff_panel(comparison))


if __name__ == "__main__":
    cli()
