"""
Recipe identity — name + reverse-DNS identifier.

The recipe tool prints one recipe per line when asked for identifiers:

    Firefox.download (com.github.autopkg.download.firefox-rc-en_US)

This module parses those lines and derives repository short names
from repository URLs.
"""

from __future__ import annotations

from pydantic import BaseModel

OVERRIDE_SUFFIX = ".override"


class RecipeRef(BaseModel):
    """A recipe as reported by the recipe tool."""

    name: str
    identifier: str
    path: str = ""

    @classmethod
    def parse(cls, line: str) -> RecipeRef | None:
        """Parse a ``"<name> (<identifier>)"`` listing line.

        A trailing ``" - <path>"`` (``--with-paths``) is kept in ``path``.
        Returns None for blank or malformed lines.
        """
        line = line.strip()
        if not line or " (" not in line:
            return None

        name, rest = line.split(" (", 1)
        path = ""
        if ") - " in rest:
            identifier, path = rest.split(") - ", 1)
        else:
            identifier = rest.removesuffix(")")

        name = name.strip()
        identifier = identifier.strip()
        if not name or not identifier:
            return None
        return cls(name=name, identifier=identifier, path=path.strip())

    @property
    def is_override(self) -> bool:
        return (
            self.name.endswith(OVERRIDE_SUFFIX)
            or ".override." in self.identifier
            or "RecipeOverrides" in self.path
        )


def parse_recipe_listing(lines: list[str]) -> list[RecipeRef]:
    """Parse every well-formed line of a recipe listing, in order."""
    refs = []
    for line in lines:
        ref = RecipeRef.parse(line)
        if ref is not None:
            refs.append(ref)
    return refs


def repo_short_name(repo_url: str) -> str:
    """Final path segment of a repository URL, ``.git`` stripped.

    ``https://github.com/autopkg/recipes.git`` → ``recipes``
    """
    name = repo_url.rsplit("/", 1)[-1]
    return name.removesuffix(".git")


def override_name(recipe: str) -> str:
    """Override name for a recipe (``Foo`` → ``Foo.override``)."""
    return f"{recipe}{OVERRIDE_SUFFIX}"
