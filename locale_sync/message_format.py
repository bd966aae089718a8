"""
ICU MessageFormat compiler used at render time.

Supported syntax:

    Hello, {name}!
    {count, number}            {ratio, number, percent}     {n, number, integer}
    {when, date, short}        {when, time}
    {count, plural, offset:1 =0 {nobody} one {# item} other {# items}}
    {place, selectordinal, one {#st} two {#nd} few {#rd} other {#th}}
    {gender, select, female {she} male {he} other {they}}

Apostrophes quote syntax characters: ``''`` is a literal quote and ``'{x}'``
renders ``{x}`` verbatim.

``compile_messages`` never raises and the translator it returns never raises:
a template that does not parse is skipped at compile time, and a key that is
missing or fails to format renders as the key itself.
"""
import datetime
import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from babel import Locale, UnknownLocaleError
from babel.dates import format_date, format_time
from babel.numbers import format_decimal, format_percent

from locale_sync.errors import MessageFormatError

logger = logging.getLogger(__name__)

MAX_NESTING_DEPTH = 32

Values = Mapping[str, Any]
Translator = Callable[..., str]


@dataclass(frozen=True)
class Argument:
    name: str
    kind: Optional[str] = None
    style: Optional[str] = None


@dataclass(frozen=True)
class Pound:
    pass


@dataclass(frozen=True)
class Plural:
    name: str
    options: Dict[str, list]
    offset: int = 0
    ordinal: bool = False


@dataclass(frozen=True)
class Select:
    name: str
    options: Dict[str, list]


Node = Union[str, Argument, Pound, Plural, Select]

_SIMPLE_KINDS = ('number', 'date', 'time')
_NUMBER_STYLES = ('integer', 'percent')
_NUMBER_PATTERN = re.compile(r'^[#0.,]+$')
_DATETIME_STYLES = ('short', 'medium', 'long', 'full')
_PLURAL_KINDS = ('plural', 'selectordinal')


class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def error(self, message: str) -> MessageFormatError:
        return MessageFormatError(f"{message} at offset {self.pos} in {self.text!r}")

    def parse(self) -> List[Node]:
        nodes = self.parse_nodes(in_plural=False, depth=0)
        if self.pos < len(self.text):
            raise self.error("Unmatched '}'")
        return nodes

    def parse_nodes(self, in_plural: bool, depth: int) -> List[Node]:
        if depth > MAX_NESTING_DEPTH:
            raise self.error("Message nesting too deep")
        nodes: List[Node] = []
        buffer: List[str] = []
        text = self.text
        while self.pos < len(text):
            char = text[self.pos]
            if char == '}':
                break
            if char == '{':
                if buffer:
                    nodes.append(''.join(buffer))
                    buffer = []
                nodes.append(self.parse_argument(in_plural, depth))
            elif char == '#' and in_plural:
                if buffer:
                    nodes.append(''.join(buffer))
                    buffer = []
                nodes.append(Pound())
                self.pos += 1
            elif char == "'":
                buffer.append(self.parse_quoted(in_plural))
            else:
                buffer.append(char)
                self.pos += 1
        if buffer:
            nodes.append(''.join(buffer))
        return nodes

    def parse_quoted(self, in_plural: bool) -> str:
        text = self.text
        nxt = text[self.pos + 1] if self.pos + 1 < len(text) else ''
        if nxt == "'":
            self.pos += 2
            return "'"
        if nxt not in ('{', '}') and not (nxt == '#' and in_plural):
            self.pos += 1
            return "'"
        # Quoted literal runs until the next lone apostrophe
        self.pos += 1
        chunk = []
        while self.pos < len(text):
            char = text[self.pos]
            if char == "'":
                if self.pos + 1 < len(text) and text[self.pos + 1] == "'":
                    chunk.append("'")
                    self.pos += 2
                    continue
                self.pos += 1
                return ''.join(chunk)
            chunk.append(char)
            self.pos += 1
        return ''.join(chunk)

    def skip_ws(self) -> None:
        while self.pos < len(self.text) and self.text[self.pos].isspace():
            self.pos += 1

    def read_token(self, stops: str) -> str:
        start = self.pos
        while self.pos < len(self.text) and not self.text[self.pos].isspace() and self.text[self.pos] not in stops:
            self.pos += 1
        return self.text[start:self.pos]

    def expect(self, char: str) -> None:
        if self.pos >= len(self.text) or self.text[self.pos] != char:
            raise self.error(f"Expected '{char}'")
        self.pos += 1

    def parse_argument(self, in_plural: bool, depth: int) -> Node:
        self.expect('{')
        self.skip_ws()
        name = self.read_token(',{}')
        if not name:
            raise self.error("Empty argument name")
        self.skip_ws()
        if self.pos < len(self.text) and self.text[self.pos] == '}':
            self.pos += 1
            return Argument(name)
        self.expect(',')
        self.skip_ws()
        kind = self.read_token(',{}')
        self.skip_ws()

        if kind in _SIMPLE_KINDS:
            style = None
            if self.pos < len(self.text) and self.text[self.pos] == ',':
                self.pos += 1
                end = self.text.find('}', self.pos)
                if end == -1:
                    raise self.error("Unclosed argument")
                style = self.text[self.pos:end].strip() or None
                self.check_style(kind, style)
                self.pos = end
            self.expect('}')
            return Argument(name, kind, style)

        if kind in _PLURAL_KINDS or kind == 'select':
            self.expect(',')
            offset = 0
            self.skip_ws()
            if kind == 'plural' and self.text.startswith('offset:', self.pos):
                self.pos += len('offset:')
                self.skip_ws()
                raw_offset = self.read_token('{}')
                try:
                    offset = int(raw_offset)
                except ValueError:
                    raise self.error(f"Invalid plural offset '{raw_offset}'") from None
            options = self.parse_options(kind in _PLURAL_KINDS or in_plural, depth)
            self.expect('}')
            if kind == 'select':
                return Select(name, options)
            return Plural(name, options, offset, ordinal=(kind == 'selectordinal'))

        raise self.error(f"Unknown argument type '{kind}'")

    def check_style(self, kind: str, style: Optional[str]) -> None:
        # Skeletons (::...) and currency styles are not supported
        if style is None:
            return
        if kind == 'number':
            if style in _NUMBER_STYLES or _NUMBER_PATTERN.match(style):
                return
        elif style in _DATETIME_STYLES:
            return
        raise self.error(f"Unsupported {kind} style '{style}'")

    def parse_options(self, in_plural: bool, depth: int) -> Dict[str, list]:
        options: Dict[str, list] = {}
        while True:
            self.skip_ws()
            if self.pos >= len(self.text):
                raise self.error("Unclosed option list")
            if self.text[self.pos] == '}':
                break
            selector = self.read_token('{}')
            if not selector:
                raise self.error("Missing selector")
            if selector in options:
                raise self.error(f"Duplicate selector '{selector}'")
            self.skip_ws()
            self.expect('{')
            options[selector] = self.parse_nodes(in_plural, depth + 1)
            self.expect('}')
        if 'other' not in options:
            raise self.error("Missing 'other' option")
        return options


def parse_message(template: str) -> List[Node]:
    """
    Parse a template into nodes.

    Raises:
        MessageFormatError: If the template is not valid.
    """
    return _Parser(template).parse()


@lru_cache(maxsize=128)
def _babel_locale(locale: str) -> Optional[Locale]:
    try:
        return Locale.parse(locale.replace('-', '_'))
    except (UnknownLocaleError, ValueError, TypeError):
        return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _exact_selector(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, Decimal) and value == value.to_integral_value():
        return str(int(value))
    return str(value)


def plural_category(n: Union[int, float, Decimal], locale: str, ordinal: bool = False) -> str:
    """CLDR plural category of ``n``; unknown locales use the one/other rule."""
    babel_locale = _babel_locale(locale)
    if babel_locale is None:
        if ordinal:
            return 'other'
        return 'one' if abs(n) == 1 else 'other'
    rule = babel_locale.ordinal_form if ordinal else babel_locale.plural_form
    return rule(n)


class CompiledMessage:
    """A parsed template bound to a locale."""

    def __init__(self, template: str, locale: str):
        self.template = template
        self.locale = locale
        self.nodes = parse_message(template)
        self._format_locale = _babel_locale(locale) or Locale('en')

    def format(self, values: Optional[Values] = None) -> str:
        """
        Render the message.

        Raises:
            MessageFormatError: A referenced value is missing or has the wrong type.
        """
        parts = self._format_nodes(self.nodes, values or {}, None)
        return ''.join(parts)

    def _number(self, value: Any, style: Optional[str]) -> str:
        if not _is_number(value):
            raise MessageFormatError(f"Expected a number, got {value!r}")
        if style == 'percent':
            return format_percent(value, locale=self._format_locale)
        if style == 'integer':
            return format_decimal(round(value), locale=self._format_locale)
        if style:
            return format_decimal(value, format=style, locale=self._format_locale)
        return format_decimal(value, locale=self._format_locale)

    def _datetime(self, value: Any, kind: str, style: Optional[str]) -> str:
        style = style or 'medium'
        if kind == 'date':
            if not isinstance(value, datetime.date):
                raise MessageFormatError(f"Expected a date, got {value!r}")
            return format_date(value, format=style, locale=self._format_locale)
        if not isinstance(value, (datetime.datetime, datetime.time)):
            raise MessageFormatError(f"Expected a time, got {value!r}")
        return format_time(value, format=style, locale=self._format_locale)

    def _format_nodes(self, nodes: List[Node], values: Values, pound: Optional[Any]) -> List[str]:
        parts: List[str] = []
        for node in nodes:
            if isinstance(node, str):
                parts.append(node)
            elif isinstance(node, Pound):
                parts.append(self._number(pound, None))
            elif isinstance(node, Argument):
                if node.name not in values:
                    raise MessageFormatError(f"Missing value for argument '{node.name}'")
                value = values[node.name]
                if node.kind == 'number':
                    parts.append(self._number(value, node.style))
                elif node.kind in ('date', 'time'):
                    parts.append(self._datetime(value, node.kind, node.style))
                elif value is not None:
                    parts.append(str(value))
            elif isinstance(node, Plural):
                if node.name not in values:
                    raise MessageFormatError(f"Missing value for argument '{node.name}'")
                value = values[node.name]
                if not _is_number(value):
                    raise MessageFormatError(f"Plural argument '{node.name}' must be a number, got {value!r}")
                exact = f"={_exact_selector(value)}"
                if exact in node.options:
                    branch = node.options[exact]
                else:
                    category = plural_category(value - node.offset, self.locale, node.ordinal)
                    branch = node.options.get(category, node.options['other'])
                parts.extend(self._format_nodes(branch, values, value - node.offset))
            elif isinstance(node, Select):
                if node.name not in values:
                    raise MessageFormatError(f"Missing value for argument '{node.name}'")
                branch = node.options.get(str(values[node.name]), node.options['other'])
                parts.extend(self._format_nodes(branch, values, pound))
        return parts


def compile_messages(locale: str, messages: Mapping[str, str]) -> Translator:
    """
    Compile every message of a map and return a translator.

    Templates that fail to parse are logged and left out, so calling the
    translator with their key falls back to the key.
    """
    compiled: Dict[str, CompiledMessage] = {}
    for key, template in messages.items():
        try:
            compiled[key] = CompiledMessage(template, locale)
        except MessageFormatError as exc:
            logger.warning(f"Invalid message format for key \"{key}\" ({locale}): {exc}")

    def t(key: str, values: Optional[Values] = None) -> str:
        message = compiled.get(key)
        if message is None:
            logger.warning(f"Missing translation for key \"{key}\" ({locale})")
            return key
        # Rendering must never fail on a translation problem, Babel errors included
        try:
            return message.format(values)
        except Exception as exc:
            logger.error(f"Error formatting \"{key}\" ({locale}) with values {values!r}: {exc!r}")
            return key

    return t
