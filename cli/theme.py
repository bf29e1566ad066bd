"""Unified Rich theme and reusable UI helper functions for the CLI."""

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.theme import Theme
from rich.tree import Tree

NOVEL_THEME = Theme({
    "app.title": "bold",
    "success": "green",
    "warning": "yellow",
    "error": "red",
    "info": "blue",
    "muted": "dim",
    "accent": "cyan",
    "stat.label": "dim",
    "stat.value": "bold",
    "chapter.id": "blue",
    "kind.volume": "bold cyan",
    "kind.chapter": "bold",
    "kind.scene": "italic",
    "diff.add": "green",
    "diff.del": "red",
})

_KIND_LABELS = {"volume": "卷", "chapter": "章", "scene": "场景"}


def get_console() -> Console:
    """Return a Console instance with the novel theme applied."""
    return Console(theme=NOVEL_THEME)


def app_header(title: str = "quillstore") -> Rule:
    """Return a Rule element for the application header banner."""
    return Rule(title=f"[bold]{title}[/]", style="dim")


def command_panel(title: str, fields: dict[str, str]) -> Panel:
    """Return a Panel displaying command parameters.

    Args:
        title: Panel title (e.g. "移动章节").
        fields: Ordered dict of label -> value pairs.
    """
    lines = []
    for label, value in fields.items():
        lines.append(f"  [stat.label]{label}:[/] [stat.value]{value}[/]")
    body = "\n".join(lines)
    return Panel(body, title=f"[bold]{title}[/]", box=box.ROUNDED, border_style="dim", padding=(0, 2))


def success_panel(title: str, body: str) -> Panel:
    """Return a green-bordered Panel for success results."""
    return Panel(body, title=f"[success]{title}[/]", box=box.ROUNDED, border_style="green", padding=(0, 2))


def chapter_tree(title: str, tree) -> Tree:
    """Build a Rich Tree from a ChapterTree.

    Args:
        title: Label of the tree root (usually the novel title).
        tree: ChapterTree to render.
    """
    root = Tree(f"[bold]{escape(title)}[/]")
    branches = {}
    for chapter, _depth in tree.flatten():
        kind = chapter.kind.value
        label = (
            f"[chapter.id]#{chapter.id}[/] [kind.{kind}]{escape(chapter.title)}[/] "
            f"[muted]{_KIND_LABELS[kind]} · {chapter.word_count}字[/]"
        )
        if chapter.archived:
            label += " [warning](已归档)[/]"
        parent = branches.get(chapter.parent_id, root)
        branches[chapter.id] = parent.add(label)
    return root


def history_table(revisions: list) -> Table:
    """Build a Rich Table of revision metadata, newest first."""
    table = Table(box=box.ROUNDED, border_style="dim", show_header=True, padding=(0, 1))
    table.add_column("版本", style="chapter.id", justify="right")
    table.add_column("类型", style="muted")
    table.add_column("字数", justify="right")
    table.add_column("时间")
    table.add_column("说明")

    for r in revisions:
        message = escape(r.commit_message or "")
        if r.is_auto_save:
            message = f"[muted]自动保存[/] {message}".strip()
        table.add_row(
            str(r.id),
            r.version_type.value,
            str(r.word_count),
            r.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            message,
        )
    return table


def diff_panel(comparison) -> Panel:
    """Return a Panel with a colored unified diff and change counts."""
    lines = []
    for line in comparison.patch.splitlines():
        escaped = escape(line)
        if line.startswith("+") and not line.startswith("+++"):
            lines.append(f"[diff.add]{escaped}[/]")
        elif line.startswith("-") and not line.startswith("---"):
            lines.append(f"[diff.del]{escaped}[/]")
        else:
            lines.append(escaped)
    stats = comparison.statistics
    lines.append("")
    lines.append(
        f"[stat.label]新增:[/] [diff.add]{stats.insertions}[/]  "
        f"[stat.label]删除:[/] [diff.del]{stats.deletions}[/]  "
        f"[stat.label]未变:[/] {stats.unchanged}"
    )
    if comparison.similar_chunks:
        lines.append(f"[stat.label]改写的行:[/] {len(comparison.similar_chunks)}")
        for chunk in comparison.similar_chunks:
            lines.append(
                f"  [muted]{chunk.old_start + 1} → {chunk.new_start + 1} "
                f"({chunk.similarity:.0%})[/] {escape(chunk.new_text)}"
            )
    return Panel(
        "\n".join(lines),
        title=f"[bold]版本 {comparison.older.id} → {comparison.newer.id}[/]",
        box=box.ROUNDED,
        border_style="dim",
        padding=(0, 1),
    )
