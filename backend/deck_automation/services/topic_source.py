from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from io import BytesIO

from openpyxl import load_workbook


logger = logging.getLogger("deck_automation.jobs")

_LEVEL3_SPLIT = re.compile(r"[•\n]")
_LEVEL1_COLUMN = 1
_LEVEL2_COLUMN = 2
_LEVEL3_COLUMN = 3


class TopicSourceError(ValueError):
    pass


@dataclass
class TopicNode:
    name: str
    children: list[TopicNode] = field(default_factory=list)


@dataclass(frozen=True)
class Unit:
    name: str
    topic_tree: tuple[TopicNode, ...] = ()
    level1_topics: tuple[str, ...] = ()
    level2_topics: tuple[str, ...] = ()
    level3_topics: tuple[str, ...] = ()

    def render_tree(self, indent: str = "  ") -> str:
        lines: list[str] = []

        def walk(nodes, depth: int) -> None:
            for node in nodes:
                lines.append(f"{indent * depth}- {node.name}")
                walk(node.children, depth + 1)

        walk(self.topic_tree, 0)
        return "\n".join(lines)


@dataclass(frozen=True)
class TopicSource:
    subject_name: str
    units: tuple[Unit, ...]


def _cell_text(row: tuple, index: int) -> str:
    if index >= len(row) or row[index] is None:
        return ""
    return str(row[index]).strip()


def _append_unique(items: list[str], value: str) -> None:
    if value not in items:
        items.append(value)


class _UnitBuilder:
    def __init__(self, name: str):
        self.name = name
        self.tree: list[TopicNode] = []
        self.level1: list[str] = []
        self.level2: list[str] = []
        self.level3: list[str] = []

    def build(self) -> Unit:
        return Unit(
            name=self.name,
            topic_tree=tuple(self.tree),
            level1_topics=tuple(self.level1),
            level2_topics=tuple(self.level2),
            level3_topics=tuple(self.level3),
        )


def parse_toc_workbook(content: bytes) -> TopicSource:
    """Parse a table-of-contents workbook into units.

    The TOC sheet is the one named "TOC" (any case) or else the third sheet.
    A1 holds the subject name, row 3 holds the header with a "Unit" column,
    and topic levels 1-3 live in columns B, C and D from row 4 on. Unit cells
    are often merged, so an empty unit cell continues the previous unit.
    """
    try:
        workbook = load_workbook(BytesIO(content), read_only=True, data_only=True)
    except Exception as exc:
        raise TopicSourceError(f"Could not read workbook: {exc}") from exc

    sheet_name = next((name for name in workbook.sheetnames if name.lower() == "toc"), None)
    if sheet_name is None:
        if len(workbook.sheetnames) < 3:
            raise TopicSourceError(
                'Could not find TOC sheet. The workbook needs a sheet named "TOC" or at least 3 sheets.'
            )
        sheet_name = workbook.sheetnames[2]

    rows = [tuple(row) for row in workbook[sheet_name].iter_rows(values_only=True)]
    logger.info("toc_sheet_loaded sheet=%s rows=%d", sheet_name, len(rows))
    if len(rows) < 4:
        raise TopicSourceError("TOC sheet must have at least 4 rows")

    subject_name = _cell_text(rows[0], 0) or "Unknown Subject"
    header = rows[2]
    unit_column = next(
        (idx for idx, cell in enumerate(header) if cell is not None and "unit" in str(cell).lower()),
        None,
    )
    if unit_column is None:
        raise TopicSourceError('Could not find "Unit" column in row 3')

    builders: dict[str, _UnitBuilder] = {}
    current_unit = ""
    current_level1: TopicNode | None = None
    current_level2: TopicNode | None = None

    for row in rows[3:]:
        unit_value = _cell_text(row, unit_column)
        if unit_value:
            if unit_value != current_unit:
                current_level1 = None
                current_level2 = None
            current_unit = unit_value
        if not current_unit:
            continue

        level1 = _cell_text(row, _LEVEL1_COLUMN)
        level2 = _cell_text(row, _LEVEL2_COLUMN)
        level3 = _cell_text(row, _LEVEL3_COLUMN)
        if not (level1 or level2 or level3):
            continue

        builder = builders.setdefault(current_unit, _UnitBuilder(current_unit))

        if level1:
            _append_unique(builder.level1, level1)
            current_level1 = TopicNode(level1)
            builder.tree.append(current_level1)
            current_level2 = None

        if level2 and current_level1 is not None:
            _append_unique(builder.level2, level2)
            current_level2 = TopicNode(level2)
            current_level1.children.append(current_level2)

        if level3:
            for item in (part.strip() for part in _LEVEL3_SPLIT.split(level3)):
                if not item:
                    continue
                _append_unique(builder.level3, item)
                if current_level2 is not None and all(child.name != item for child in current_level2.children):
                    current_level2.children.append(TopicNode(item))

    units = tuple(builder.build() for builder in builders.values())
    logger.info("toc_parsed subject=%s units=%d", subject_name, len(units))
    return TopicSource(subject_name=subject_name, units=units)
