"""Pick a dependency install command from the files present in a project."""

from __future__ import annotations

from pathlib import Path

# First match wins; lockfiles come before the bare manifest of the same ecosystem.
INSTALL_COMMANDS: tuple[tuple[str, str], ...] = (
    ("package-lock.json", "npm ci"),
    ("yarn.lock", "yarn install --frozen-lockfile"),
    ("pnpm-lock.yaml", "pnpm install --frozen-lockfile"),
    ("package.json", "npm install"),
    ("requirements.txt", "pip install -r requirements.txt"),
    ("pyproject.toml", "pip install -e ."),
    ("Cargo.toml", "cargo fetch"),
    ("go.mod", "go mod download"),
    ("Gemfile", "bundle install"),
)


def detect_install_command(project_path: Path | str) -> str | None:
    """Return the install command for *project_path*, or ``None`` if nothing matches."""
    root = Path(project_path)
    for marker, command in INSTALL_COMMANDS:
        if (root / marker).is_file():
            return command
    return None
