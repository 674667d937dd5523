"""Shell command tokenizer.

Turns raw command text into a flat token stream annotated with substitution
depth, then groups it into segments (simple commands) and pipelines per
substitution scope. Understands just enough bash to answer policy questions:

  - single quotes, ANSI-C quotes ($'...'), double quotes and backslash escapes
  - comments and backslash-newline continuations
  - heredocs, with quoted delimiters kept literal and unquoted bodies scanned
    for substitutions
  - $( ), backtick and <( ) / >( ) substitutions, nested in any combination
  - control operators, pipes and redirections (with fd prefixes)

Parsing never raises: unterminated quotes and substitutions close at end of
input, and substitutions nested past MAX_DEPTH are skipped with the result
marked ``truncated``.
"""

import functools
import itertools
import re
from dataclasses import dataclass, field

WORD = "word"
OPERATOR = "operator"
REDIRECT = "redirect"

CHAIN_OPERATORS = frozenset({"&&", "||", ";", ";;", "\n"})
PIPE_OPERATORS = frozenset({"|", "|&"})
HEREDOC_OPERATORS = frozenset({"<<", "<<-"})

# Longest first: the first prefix match wins.
_REDIRECT_OPERATORS = ("&>>", "&>", "<<<", "<<-", "<<", "<>", "<&", ">>", ">&", ">|", "<", ">")
_CONTROL_OPERATORS = ("&&", "||", ";;", "|&", ";", "|", "&", "(", ")")

# A newline after one of these continues the same command list.
_CONTINUATION_OPERATORS = frozenset({"|", "|&", "&&", "||", ";", ";;", "\n", "("})

# Reserved words that introduce the command following them.
_PREFIX_KEYWORDS = frozenset({"if", "then", "else", "elif", "do", "while", "until", "!", "{", "time"})
# Reserved words whose segment runs no command of its own.
_NON_COMMAND_KEYWORDS = frozenset(
    {"for", "case", "select", "function", "in", "fi", "done", "esac", "}"}
)

_ASSIGNMENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\[[^\]]*\])?\+?=")
_SPECIAL_PARAMETERS = frozenset("@*#?$!-")

# Substitutions nested deeper than this are skipped and the parse is marked
# truncated.
MAX_DEPTH = 32


@dataclass(eq=False)
class Token:
    """One lexical unit.

    ``literal`` is true when the word consists only of single-quoted (or
    ANSI-C quoted) text: nothing in it is ever interpreted. ``expands`` is
    true when the word contains a parameter expansion or substitution, so its
    runtime value is unknown. Redirections carry their target word in
    ``target`` and, for heredocs, the body text in ``body``.
    """

    kind: str
    value: str
    depth: int = 0
    scope: int = 0
    literal: bool = False
    expands: bool = False
    quoted: bool = False
    target: "Token | None" = None
    body: "str | None" = None

    @property
    def op(self):
        """Redirection operator without its fd prefix (``2>&`` -> ``>&``)."""
        return self.value.lstrip("0123456789")

    @property
    def heredoc_literal(self):
        return self.target is not None and self.target.quoted


@dataclass(eq=False)
class Segment:
    """A simple command: the tokens between two operators in one scope."""

    tokens: list
    depth: int
    scope: int
    piped: bool = False
    after: "str | None" = None

    @property
    def words(self):
        return [t for t in self.tokens if t.kind == WORD]

    @property
    def redirects(self):
        return [t for t in self.tokens if t.kind == REDIRECT]

    @functools.cached_property
    def _command_index(self):
        for i, word in enumerate(self.words):
            if not word.literal and _ASSIGNMENT.match(word.value):
                continue
            if not word.quoted and word.value in _PREFIX_KEYWORDS:
                continue
            if not word.quoted and word.value in _NON_COMMAND_KEYWORDS:
                return None
            if word.expands:
                return None
            return i
        return None

    @property
    def name(self):
        """Command name, or None for variables, substitutions and keywords."""
        index = self._command_index
        return None if index is None else self.words[index].value

    @property
    def args(self):
        index = self._command_index
        return [] if index is None else self.words[index + 1 :]


@dataclass
class ParsedCommand:
    text: str
    tokens: tuple
    segments: tuple = field(default_factory=tuple)
    # true when some substitution was nested too deeply to be parsed
    truncated: bool = False

    @property
    def top_level(self):
        return [s for s in self.segments if s.scope == 0]

    def pipelines(self, scope=0):
        """Group the segments of one scope into pipelines (lists of stages)."""
        pipelines = []
        for segment in self.segments:
            if segment.scope != scope:
                continue
            if segment.piped and pipelines:
                pipelines[-1].append(segment)
            else:
                pipelines.append([segment])
        return pipelines


class _Word:
    __slots__ = ("chars", "started", "single", "other", "expands", "quoted")

    def __init__(self):
        self.chars = []
        self.started = False
        self.single = False
        self.other = False
        self.expands = False
        self.quoted = False

    def add(self, text, single=False):
        self.chars.append(text)
        self.started = True
        if single:
            self.single = True
        elif text:
            self.other = True

    @property
    def value(self):
        return "".join(self.chars)


class _Scope:
    __slots__ = ("depth", "id", "word", "redirect", "heredocs", "parens", "last")

    def __init__(self, depth, scope_id):
        self.depth = depth
        self.id = scope_id
        self.word = _Word()
        self.redirect = None
        self.heredocs = []
        self.parens = 0
        self.last = None


class _State:
    def __init__(self):
        self.tokens = []
        self.scopes = itertools.count(1)
        self.truncated = False


def _skip_balanced(text, i, level):
    """Return the index just past the parenthesis closing ``level`` open ones."""
    while i < len(text) and level > 0:
        if text[i] == "(":
            level += 1
        elif text[i] == ")":
            level -= 1
        i += 1
    return i


class _Lexer:
    def __init__(self, text, state):
        self.text = text
        self.pos = 0
        self.state = state

    # ── Scope level: words, operators, newlines ──

    def parse_scope(self, depth, scope_id, nested=False):
        """Tokenize until end of input, or the ``)`` closing a nested scope."""
        text = self.text
        sc = _Scope(depth, scope_id)
        while self.pos < len(text):
            c = text[self.pos]
            word = sc.word
            if c in " \t\r":
                self._finish_word(sc)
                self.pos += 1
            elif c == "\n":
                self.pos += 1
                self._newline(sc)
            elif c == "\\":
                nxt = text[self.pos + 1 : self.pos + 2]
                if nxt == "\n":
                    self.pos += 2
                else:
                    word.add(nxt or c)
                    word.quoted = True
                    self.pos += 2
            elif c == "'":
                end = text.find("'", self.pos + 1)
                end = len(text) if end == -1 else end
                word.add(text[self.pos + 1 : end], single=True)
                word.quoted = True
                self.pos = end + 1
            elif c == '"':
                self.pos += 1
                self._double_quoted(word, depth)
            elif c == "$":
                self._dollar(word, depth)
            elif c == "`":
                self._backtick(word, depth)
            elif c == "#" and not word.started:
                end = text.find("\n", self.pos)
                self.pos = len(text) if end == -1 else end
            elif c in "<>" and text[self.pos + 1 : self.pos + 2] == "(":
                start = self.pos
                self.pos += 2
                self._substitution(depth)
                word.add(text[start : self.pos])
                word.expands = True
            elif c == ")" and nested and sc.parens == 0:
                self.pos += 1
                self._finish_word(sc)
                return
            elif c in "&|;()<>":
                self._operator(sc)
            else:
                word.add(c)
                self.pos += 1
        self._finish_word(sc)

    def _emit(self, sc, token):
        self.state.tokens.append(token)
        sc.last = token

    def _finish_word(self, sc):
        word = sc.word
        sc.word = _Word()
        if not word.started:
            return
        token = Token(
            WORD,
            word.value,
            sc.depth,
            sc.id,
            literal=word.single and not word.other,
            expands=word.expands,
            quoted=word.quoted,
        )
        if sc.redirect is not None:
            sc.redirect.target = token
            if sc.redirect.op in HEREDOC_OPERATORS:
                sc.heredocs.append(sc.redirect)
            sc.redirect = None
            return
        self._emit(sc, token)

    def _operator(self, sc):
        text = self.text
        for op in _REDIRECT_OPERATORS:
            if text.startswith(op, self.pos):
                word = sc.word
                fd = ""
                if word.started and not word.quoted and not word.expands and word.value.isdigit():
                    fd = word.value
                    sc.word = _Word()
                else:
                    self._finish_word(sc)
                self.pos += len(op)
                sc.redirect = Token(REDIRECT, fd + op, sc.depth, sc.id)
                self._emit(sc, sc.redirect)
                return
        for op in _CONTROL_OPERATORS:
            if text.startswith(op, self.pos):
                self._finish_word(sc)
                sc.redirect = None
                self.pos += len(op)
                if op == "(":
                    sc.parens += 1
                elif op == ")":
                    sc.parens = max(0, sc.parens - 1)
                self._emit(sc, Token(OPERATOR, op, sc.depth, sc.id))
                return

    def _newline(self, sc):
        self._finish_word(sc)
        sc.redirect = None
        last = sc.last
        if last is not None and not (
            last.kind == OPERATOR and last.value in _CONTINUATION_OPERATORS
        ):
            self._emit(sc, Token(OPERATOR, "\n", sc.depth, sc.id))
        if sc.heredocs:
            self._heredoc_bodies(sc)

    def _heredoc_bodies(self, sc):
        text = self.text
        for redirect in sc.heredocs:
            delimiter = redirect.target.value
            strip_tabs = redirect.op == "<<-"
            lines = []
            while self.pos < len(text):
                start = self.pos
                end = text.find("\n", start)
                end = len(text) if end == -1 else end
                line = text[start:end]
                check = line.lstrip("\t") if strip_tabs else line
                if check == delimiter:
                    self.pos = min(end + 1, len(text))
                    break
                # `EOF)` closing both the heredoc and an enclosing $( )
                if sc.id and check.startswith(delimiter) and check[len(delimiter) :].lstrip().startswith(")"):
                    self.pos = start + (len(line) - len(check)) + len(delimiter)
                    break
                lines.append(line)
                self.pos = min(end + 1, len(text))
            redirect.body = "\n".join(lines)
            if not redirect.heredoc_literal:
                _Lexer(redirect.body, self.state)._double_quoted(_Word(), sc.depth, terminator=None)
        sc.heredocs = []

    # ── Word level: quotes and expansions ──

    def _double_quoted(self, word, depth, terminator='"'):
        """Consume a double-quoted span (or a whole unquoted heredoc body)."""
        text = self.text
        word.add("")
        word.other = True
        word.quoted = True
        while self.pos < len(text):
            c = text[self.pos]
            if c == terminator:
                self.pos += 1
                return
            if c == "\\" and self.pos + 1 < len(text):
                nxt = text[self.pos + 1]
                if nxt == "\n":
                    self.pos += 2
                elif nxt in '"\\$`':
                    word.add(nxt)
                    self.pos += 2
                else:
                    word.add(c)
                    self.pos += 1
            elif c == "$":
                self._dollar(word, depth, in_double=True)
            elif c == "`":
                self._backtick(word, depth)
            else:
                word.add(c)
                self.pos += 1

    def _dollar(self, word, depth, in_double=False):
        text = self.text
        start = self.pos
        nxt = text[self.pos + 1 : self.pos + 2]
        if text.startswith("$((", self.pos):
            self.pos = _skip_balanced(text, self.pos + 3, 2)
        elif nxt == "(":
            self.pos += 2
            self._substitution(depth)
        elif nxt == "{":
            self.pos += 2
            self._braces(depth)
        elif nxt == "'" and not in_double:
            self.pos += 2
            word.add(self._ansi_c(), single=True)
            word.quoted = True
            return
        elif nxt == '"' and not in_double:
            # $"..." is a locale-translated double-quoted string
            self.pos += 1
            return
        elif nxt.isdigit() or (nxt and nxt in _SPECIAL_PARAMETERS):
            self.pos += 2
        elif nxt.isalpha() or nxt == "_":
            self.pos += 1
            while self.pos < len(text) and (text[self.pos].isalnum() or text[self.pos] == "_"):
                self.pos += 1
        else:
            word.add("$")
            self.pos += 1
            return
        word.add(text[start : self.pos])
        word.expands = True

    def _ansi_c(self):
        text = self.text
        out = []
        while self.pos < len(text):
            c = text[self.pos]
            if c == "\\" and self.pos + 1 < len(text):
                out.append(text[self.pos + 1])
                self.pos += 2
            elif c == "'":
                self.pos += 1
                break
            else:
                out.append(c)
                self.pos += 1
        return "".join(out)

    def _braces(self, depth):
        """Skip a ${...} expansion, parsing any substitutions nested in it."""
        text = self.text
        level = 1
        scratch = _Word()
        while self.pos < len(text):
            c = text[self.pos]
            if c == "\\":
                self.pos += 2
            elif c == "'":
                end = text.find("'", self.pos + 1)
                self.pos = len(text) if end == -1 else end + 1
            elif c == '"':
                self.pos += 1
                self._double_quoted(scratch, depth)
            elif c == "$":
                self._dollar(scratch, depth, in_double=True)
            elif c == "`":
                self._backtick(scratch, depth)
            elif c == "{":
                level += 1
                self.pos += 1
            elif c == "}":
                level -= 1
                self.pos += 1
                if level == 0:
                    return
            else:
                self.pos += 1

    def _substitution(self, depth):
        """Parse a $( ) or <( ) body in place; ``self.pos`` is past the ``(``."""
        if depth + 1 > MAX_DEPTH:
            self.state.truncated = True
            self.pos = _skip_balanced(self.text, self.pos, 1)
            return
        self.parse_scope(depth + 1, next(self.state.scopes), nested=True)

    def _backtick(self, word, depth):
        text = self.text
        start = self.pos
        self.pos += 1
        inner = []
        while self.pos < len(text):
            c = text[self.pos]
            if c == "\\" and self.pos + 1 < len(text):
                nxt = text[self.pos + 1]
                inner.append(nxt if nxt in "`$\\" else c + nxt)
                self.pos += 2
            elif c == "`":
                self.pos += 1
                break
            else:
                inner.append(c)
                self.pos += 1
        if depth + 1 > MAX_DEPTH:
            self.state.truncated = True
        else:
            _Lexer("".join(inner), self.state).parse_scope(depth + 1, next(self.state.scopes))
        word.add(text[start : self.pos])
        word.expands = True


def tokenize(command):
    """Return the flat, depth-annotated token stream for ``command``."""
    return parse(command).tokens


def _group(tokens):
    by_scope = {}
    for token in tokens:
        by_scope.setdefault(token.scope, []).append(token)
    segments = []
    for scope in sorted(by_scope):
        current = []
        piped = False
        for token in by_scope[scope]:
            if token.kind != OPERATOR:
                current.append(token)
                continue
            if current:
                segments.append(Segment(current, current[0].depth, scope, piped, token.value))
                current = []
            if token.value in ("(", ")"):
                continue
            piped = token.value in PIPE_OPERATORS
        if current:
            segments.append(Segment(current, current[0].depth, scope, piped))
    return segments


@functools.lru_cache(maxsize=64)
def parse(command):
    """Tokenize and group ``command``. Results are cached per command string."""
    state = _State()
    _Lexer(command, state).parse_scope(0, 0)
    tokens = tuple(state.tokens)
    return ParsedCommand(command, tokens, tuple(_group(tokens)), state.truncated)
