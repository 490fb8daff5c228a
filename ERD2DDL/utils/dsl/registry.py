"""Statement plugin registry: the extension point for top-level keywords.

A plugin contributes one top-level keyword. The parser treats a line starting
with that keyword at column 1 (plus its indented continuation lines) as an
opaque block and hands the block text to the plugin's ``parse`` hook; the
code generator hands the resulting payload to the plugin's ``emit`` hook.

Registries are plain instances passed into a compilation run; nothing is
registered process-wide.

Example:
    >>> registry = PluginRegistry()
    >>> registry.register(StatementPlugin(
    ...     keyword="GRANT",
    ...     emit=lambda payload, model: [f"GRANT {payload}"],
    ... ))
    >>> "GRANT" in registry
    True
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Union

from .grammar import RESERVED_WORDS

ParseHook = Callable[[str], Any]
EmitHook = Callable[[Any, Any], Union[str, List[str]]]


@dataclass(frozen=True)
class StatementPlugin:
    """A keyword plus its parse/emit hooks.

    ``parse`` receives the block text after the keyword and returns a payload
    (defaults to the text itself). ``emit`` receives that payload and the
    semantic model and returns one statement or a list of statements.
    """
    keyword: str
    emit: EmitHook
    parse: Optional[ParseHook] = None
    description: str = ""


class PluginRegistry:
    """Keyword to StatementPlugin mapping for one compilation run."""

    def __init__(self, plugins: Optional[Iterable[StatementPlugin]] = None):
        self._plugins: Dict[str, StatementPlugin] = {}
        for plugin in plugins or []:
            self.register(plugin)

    def register(self, plugin: StatementPlugin) -> None:
        keyword = plugin.keyword
        if not keyword or not keyword.replace("_", "").isalnum() or keyword[0].isdigit():
            raise ValueError(f"Plugin keyword must be an identifier, got {keyword!r}")
        if keyword in RESERVED_WORDS:
            raise ValueError(f"Plugin keyword {keyword!r} is a built-in keyword")
        if keyword in self._plugins:
            raise ValueError(f"Plugin keyword {keyword!r} is already registered")
        self._plugins[keyword] = plugin

    def get(self, keyword: str) -> Optional[StatementPlugin]:
        return self._plugins.get(keyword)

    def __contains__(self, keyword: object) -> bool:
        return keyword in self._plugins

    def __iter__(self) -> Iterator[StatementPlugin]:
        return iter(self._plugins.values())

    def __len__(self) -> int:
        return len(self._plugins)

    @property
    def keywords(self) -> List[str]:
        return list(self._plugins)
