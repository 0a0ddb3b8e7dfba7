"""Data models for snipbook."""

import datetime
import re
import uuid
from datetime import timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import (
    BaseModel,
    Field,
    field_validator,
    model_serializer,
    model_validator,
)

# Ids and file extensions end up as filesystem path components
SAFE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_\-]+$")

DEFAULT_NOTEBOOK_COLOR = "#f38ba8"


def validate_safe_path_component(value: str, field_name: str = "value") -> str:
    """Validate that a value is safe to use as a filesystem path component.

    Prevents path traversal by rejecting:
    - Path separators (/, \\)
    - Parent directory references (..)
    - Any characters outside alphanumeric, underscore, hyphen

    Args:
        value: The string to validate
        field_name: Name of the field for error messages

    Returns:
        The validated value (unchanged)

    Raises:
        ValueError: If the value contains unsafe characters
    """
    if not value:
        raise ValueError(f"{field_name} cannot be empty")

    if ".." in value:
        raise ValueError(f"{field_name} cannot contain '..' (path traversal)")

    if "/" in value or "\\" in value:
        raise ValueError(f"{field_name} cannot contain path separators")

    if not SAFE_ID_PATTERN.match(value):
        raise ValueError(
            f"{field_name} contains invalid characters. "
            "Only alphanumeric characters, underscores and hyphens are allowed."
        )

    return value


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: datetime.datetime) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    Documents written by older tools may carry naive timestamps; they are
    assumed to be UTC so that timestamp comparisons never mix the two kinds.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


def generate_id() -> str:
    """Generate a random UUID4 identifier for a notebook, snippet or tag."""
    return str(uuid.uuid4())


class LanguageKind(str, Enum):
    """Languages a snippet can be written in."""

    RUST = "rust"
    JAVASCRIPT = "javascript"
    TYPESCRIPT = "typescript"
    PYTHON = "python"
    GO = "go"
    JAVA = "java"
    C = "c"
    CPP = "cpp"
    CSHARP = "csharp"
    PHP = "php"
    RUBY = "ruby"
    SWIFT = "swift"
    KOTLIN = "kotlin"
    DART = "dart"
    HTML = "html"
    CSS = "css"
    SCSS = "scss"
    SQL = "sql"
    BASH = "bash"
    POWERSHELL = "powershell"
    YAML = "yaml"
    JSON = "json"
    XML = "xml"
    MARKDOWN = "markdown"
    DOCKERFILE = "dockerfile"
    TOML = "toml"
    INI = "ini"
    CONFIG = "config"
    TEXT = "text"
    OTHER = "other"  # Carries a free-form name


# kind -> (display name, file extension)
_LANGUAGE_INFO: Dict[LanguageKind, tuple] = {
    LanguageKind.RUST: ("Rust", "rs"),
    LanguageKind.JAVASCRIPT: ("JavaScript", "js"),
    LanguageKind.TYPESCRIPT: ("TypeScript", "ts"),
    LanguageKind.PYTHON: ("Python", "py"),
    LanguageKind.GO: ("Go", "go"),
    LanguageKind.JAVA: ("Java", "java"),
    LanguageKind.C: ("C", "c"),
    LanguageKind.CPP: ("C++", "cpp"),
    LanguageKind.CSHARP: ("C#", "cs"),
    LanguageKind.PHP: ("PHP", "php"),
    LanguageKind.RUBY: ("Ruby", "rb"),
    LanguageKind.SWIFT: ("Swift", "swift"),
    LanguageKind.KOTLIN: ("Kotlin", "kt"),
    LanguageKind.DART: ("Dart", "dart"),
    LanguageKind.HTML: ("HTML", "html"),
    LanguageKind.CSS: ("CSS", "css"),
    LanguageKind.SCSS: ("SCSS", "scss"),
    LanguageKind.SQL: ("SQL", "sql"),
    LanguageKind.BASH: ("Bash", "sh"),
    LanguageKind.POWERSHELL: ("PowerShell", "ps1"),
    LanguageKind.YAML: ("YAML", "yml"),
    LanguageKind.JSON: ("JSON", "json"),
    LanguageKind.XML: ("XML", "xml"),
    LanguageKind.MARKDOWN: ("Markdown", "md"),
    LanguageKind.DOCKERFILE: ("Dockerfile", "dockerfile"),
    LanguageKind.TOML: ("TOML", "toml"),
    LanguageKind.INI: ("INI", "ini"),
    LanguageKind.CONFIG: ("Config", "conf"),
    LanguageKind.TEXT: ("Text", "txt"),
}

# Alternative spellings accepted when resolving from a file extension
_EXTENSION_ALIASES: Dict[str, LanguageKind] = {
    "cc": LanguageKind.CPP,
    "cxx": LanguageKind.CPP,
    "htm": LanguageKind.HTML,
    "yaml": LanguageKind.YAML,
    "config": LanguageKind.CONFIG,
}

_BY_EXTENSION: Dict[str, LanguageKind] = {
    **{ext: kind for kind, (_, ext) in _LANGUAGE_INFO.items()},
    **_EXTENSION_ALIASES,
}

_BY_NAME: Dict[str, LanguageKind] = {
    **_BY_EXTENSION,
    **{display.lower(): kind for kind, (display, _) in _LANGUAGE_INFO.items()},
    **{kind.value: kind for kind in _LANGUAGE_INFO},
}


class SnippetLanguage(BaseModel):
    """A snippet language: one of the known kinds, or OTHER with a free name.

    Serializes to a single string (the kind value, or the free name for
    OTHER) and parses back from any spelling accepted by from_name().
    """

    kind: LanguageKind = LanguageKind.TEXT
    other_name: Optional[str] = None

    model_config = {"frozen": True}

    @classmethod
    def of(cls, kind: LanguageKind) -> "SnippetLanguage":
        return cls(kind=kind)

    @classmethod
    def custom(cls, name: str) -> "SnippetLanguage":
        """Build an OTHER language, collapsing known names to their kind."""
        return cls.from_name(name)

    @classmethod
    def from_name(cls, name: str) -> "SnippetLanguage":
        """Resolve a language from a kind value, display name or extension.

        Unknown names become OTHER carrying the name as typed; an empty
        name means plain text.
        """
        cleaned = (name or "").strip()
        if not cleaned:
            return cls(kind=LanguageKind.TEXT)
        kind = _BY_NAME.get(cleaned.lower())
        if kind is not None:
            return cls(kind=kind)
        return cls(kind=LanguageKind.OTHER, other_name=cleaned)

    @classmethod
    def from_extension(cls, extension: str) -> "SnippetLanguage":
        """Resolve a language from a file extension (with or without the dot)."""
        ext = (extension or "").strip().lstrip(".").lower()
        if not ext:
            return cls(kind=LanguageKind.TEXT)
        kind = _BY_EXTENSION.get(ext)
        if kind is not None:
            return cls(kind=kind)
        return cls(kind=LanguageKind.OTHER, other_name=ext)

    @model_validator(mode="before")
    @classmethod
    def _coerce(cls, data: Any) -> Any:
        if isinstance(data, SnippetLanguage):
            return {"kind": data.kind, "other_name": data.other_name}
        if isinstance(data, LanguageKind):
            return {"kind": data}
        if isinstance(data, str):
            resolved = cls.from_name(data)
            return {"kind": resolved.kind, "other_name": resolved.other_name}
        if isinstance(data, dict):
            # {"Other": "zig"} as written by older exports
            if set(data) == {"Other"}:
                data = {"kind": LanguageKind.OTHER, "other_name": data["Other"]}
            kind = data.get("kind")
            other_name = data.get("other_name")
            if kind in (LanguageKind.OTHER, LanguageKind.OTHER.value) and other_name:
                known = _BY_NAME.get(str(other_name).strip().lower())
                if known is not None:
                    return {"kind": known}
        return data

    @model_validator(mode="after")
    def _check_other_name(self) -> "SnippetLanguage":
        if self.kind is LanguageKind.OTHER and not (self.other_name or "").strip():
            raise ValueError("OTHER language requires a name")
        if self.kind is not LanguageKind.OTHER and self.other_name is not None:
            raise ValueError("Only OTHER languages carry a name")
        return self

    @model_serializer(mode="plain")
    def _serialize(self) -> str:
        return self.key

    @property
    def key(self) -> str:
        """Stable serialized form."""
        if self.kind is LanguageKind.OTHER:
            return self.other_name
        return self.kind.value

    @property
    def is_other(self) -> bool:
        return self.kind is LanguageKind.OTHER

    @property
    def display_name(self) -> str:
        if self.kind is LanguageKind.OTHER:
            return self.other_name
        return _LANGUAGE_INFO[self.kind][0]

    @property
    def file_extension(self) -> str:
        if self.kind is LanguageKind.OTHER:
            return "txt"
        return _LANGUAGE_INFO[self.kind][1]

    def __str__(self) -> str:
        return self.display_name


class Notebook(BaseModel):
    """A named container for snippets; may nest below a parent notebook."""

    id: str = Field(default_factory=generate_id, description="Unique ID")
    name: str = Field(..., description="Display name")
    description: Optional[str] = Field(default=None)
    color: str = Field(default=DEFAULT_NOTEBOOK_COLOR)
    icon: str = Field(default="")
    parent_id: Optional[str] = Field(
        default=None, description="Parent notebook, None for roots"
    )
    children: List[str] = Field(
        default_factory=list, description="Ordered child notebook ids"
    )
    snippet_count: int = Field(default=0, description="Snippets owned directly")
    metadata: Dict[str, str] = Field(default_factory=dict)
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"validate_assignment": True, "extra": "ignore"}

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Validate that the ID is safe for filesystem use."""
        return validate_safe_path_component(v, "Notebook ID")

    @field_validator("parent_id")
    @classmethod
    def validate_parent_id(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return validate_safe_path_component(v, "Parent ID")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate that the name is not empty."""
        if not v.strip():
            raise ValueError("Notebook name cannot be empty")
        return v

    @field_validator("created_at", "updated_at")
    @classmethod
    def _aware(cls, v: datetime.datetime) -> datetime.datetime:
        return ensure_timezone_aware(v)

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def touch(self) -> None:
        self.updated_at = utc_now()

    def add_child(self, child_id: str) -> None:
        if child_id not in self.children:
            self.children.append(child_id)
            self.touch()

    def remove_child(self, child_id: str) -> None:
        self.children = [c for c in self.children if c != child_id]
        self.touch()


class CodeSnippet(BaseModel):
    """A titled unit of text owned by exactly one notebook."""

    id: str = Field(default_factory=generate_id, description="Unique ID")
    title: str = Field(..., description="Title of the snippet")
    description: Optional[str] = Field(default=None)
    # Kept in a side file; empty in the aggregate document
    content: str = Field(default="")
    language: SnippetLanguage = Field(default_factory=SnippetLanguage)
    notebook_id: str = Field(..., description="Owning notebook")
    tags: List[str] = Field(
        default_factory=list, description="Denormalized tag names"
    )
    is_favorite: bool = Field(default=False)
    use_count: int = Field(default=0)
    version: int = Field(default=1, description="Incremented on content update")
    # Derived from the language when left empty
    file_extension: str = Field(default="")
    metadata: Dict[str, str] = Field(default_factory=dict)
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)
    accessed_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"validate_assignment": True, "extra": "ignore"}

    def model_post_init(self, __context: Any) -> None:
        if not self.file_extension:
            self.file_extension = self.language.file_extension

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        return validate_safe_path_component(v, "Snippet ID")

    @field_validator("notebook_id")
    @classmethod
    def validate_notebook_id(cls, v: str) -> str:
        return validate_safe_path_component(v, "Notebook ID")

    @field_validator("file_extension")
    @classmethod
    def validate_file_extension(cls, v: str) -> str:
        if not v:
            return v
        return validate_safe_path_component(v, "File extension")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Validate that the title is not empty."""
        if not v.strip():
            raise ValueError("Title cannot be empty")
        return v

    @field_validator("created_at", "updated_at", "accessed_at")
    @classmethod
    def _aware(cls, v: datetime.datetime) -> datetime.datetime:
        return ensure_timezone_aware(v)

    def update_content(self, content: str) -> None:
        self.content = content
        self.updated_at = utc_now()
        self.version += 1

    def mark_accessed(self) -> None:
        self.accessed_at = utc_now()
        self.use_count += 1

    def toggle_favorite(self) -> bool:
        self.is_favorite = not self.is_favorite
        self.updated_at = utc_now()
        return self.is_favorite

    def has_tag(self, name: str) -> bool:
        lowered = name.lower()
        return any(t.lower() == lowered for t in self.tags)

    def is_empty(self) -> bool:
        return not self.content.strip()

    def preview(self, max_lines: int = 5) -> str:
        """Return the first max_lines lines of content."""
        return "\n".join(self.content.splitlines()[:max_lines])

    def line_count(self) -> int:
        return len(self.content.splitlines())

    def word_count(self) -> int:
        return len(self.content.split())

    def char_count(self) -> int:
        return len(self.content)


class Tag(BaseModel):
    """A label shared by any number of snippets."""

    id: str = Field(default_factory=generate_id)
    name: str = Field(..., description="Canonical name, without the '#' marker")
    color: Optional[str] = Field(default=None)
    usage_count: int = Field(default=0)
    created_at: datetime.datetime = Field(default_factory=utc_now)
    last_used_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"validate_assignment": True, "extra": "ignore"}

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Tag name cannot be empty")
        if v.startswith("#"):
            raise ValueError("Tag name is stored without the '#' marker")
        return v

    @field_validator("created_at", "last_used_at")
    @classmethod
    def _aware(cls, v: datetime.datetime) -> datetime.datetime:
        return ensure_timezone_aware(v)

    @property
    def display_name(self) -> str:
        return f"#{self.name}"

    def mark_used(self) -> None:
        self.usage_count += 1
        self.last_used_at = utc_now()

    def __str__(self) -> str:
        return self.display_name


class ExportDocument(BaseModel):
    """Versioned export/import bundle.

    This is the wire format for exports, backups and clipboard payloads.
    """

    version: str = Field(..., description="Version of the exporting tool")
    created_at: datetime.datetime = Field(default_factory=utc_now)
    notebooks: Dict[str, Notebook] = Field(default_factory=dict)
    snippets: Dict[str, CodeSnippet] = Field(default_factory=dict)
    root_notebooks: List[str] = Field(default_factory=list)
    tags: Dict[str, List[str]] = Field(
        default_factory=dict, description="Tag name -> snippet ids"
    )
    include_content: bool = Field(
        default=True, description="False when content was stripped on export"
    )

    model_config = {"extra": "ignore"}

    @field_validator("created_at")
    @classmethod
    def _aware(cls, v: datetime.datetime) -> datetime.datetime:
        return ensure_timezone_aware(v)

    @model_validator(mode="after")
    def _check_keys(self) -> "ExportDocument":
        for key, notebook in self.notebooks.items():
            if key != notebook.id:
                raise ValueError(f"Notebook key '{key}' does not match id '{notebook.id}'")
        for key, snippet in self.snippets.items():
            if key != snippet.id:
                raise ValueError(f"Snippet key '{key}' does not match id '{snippet.id}'")
        return self
