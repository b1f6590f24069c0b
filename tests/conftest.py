"""
Shared fixtures: a small on-disk monorepo and a config pointed at it.
"""

from __future__ import annotations

import json
import textwrap

import pytest

from codegraph_kb.config import Config

_ENV_KEYS = (
    "CODEGRAPH_BACKEND", "CODEGRAPH_STORE_PATH", "CODEGRAPH_OUTPUT_DIR",
    "CODEGRAPH_NAMESPACE", "CODEGRAPH_MAX_WORKERS", "CODEGRAPH_NODE_BATCH_SIZE",
    "CODEGRAPH_REL_BATCH_SIZE", "CODEGRAPH_CONFIDENCE_FLOOR", "CODEGRAPH_AMBIGUOUS_LOW",
    "CODEGRAPH_MAX_BUCKET_PAIRS", "CODEGRAPH_MAX_RESULTS", "CODEGRAPH_MIN_SCORE",
    "CODEGRAPH_MATCHER_URL", "CODEGRAPH_MATCHER_API_KEY", "CODEGRAPH_MATCHER_MODEL",
    "CODEGRAPH_MATCHER_MAX_CALLS",
    "NEO4J_URI", "NEO4J_USERNAME", "NEO4J_PASSWORD", "NEO4J_DATABASE",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep the developer's environment out of Config resolution."""
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def write(root, rel_path: str, content: str) -> None:
    path = root / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(content), encoding="utf-8")


def write_json(root, rel_path: str, data: dict) -> None:
    write(root, rel_path, json.dumps(data, indent=2))


@pytest.fixture()
def monorepo(tmp_path):
    """
    Build a two-package workspace::

        package.json                      (acme-workspace)
        README.md
        docs/guide.md                     -> links to ../README.md
        packages/pkg-a/package.json       (@acme/pkg-a, depends on @acme/pkg-b, lodash)
        packages/pkg-a/README.md
        packages/pkg-a/src/index.ts
        packages/pkg-b/package.json       (@acme/pkg-b)
        packages/pkg-b/src/user.ts        UserSchema, AddressSchema
        services/orders/models.py         pydantic Order
    """
    write_json(tmp_path, "package.json", {"name": "acme-workspace", "private": True})
    write(tmp_path, "README.md", """\
        # Acme Workspace

        Monorepo holding the acme packages.
        """)
    write(tmp_path, "docs/guide.md", """\
        ---
        title: Developer Guide
        tags: [onboarding]
        ---
        # Getting started

        Read the [workspace readme](../README.md) first.

        ```ts
        const x = 1;
        ```
        """)
    write_json(tmp_path, "packages/pkg-a/package.json", {
        "name": "@acme/pkg-a",
        "version": "2.1.0",
        "description": "Consumer package",
        "main": "src/index.ts",
        "dependencies": {"@acme/pkg-b": "workspace:*", "lodash": "^4.17.0"},
    })
    write(tmp_path, "packages/pkg-a/README.md", """\
        # @acme/pkg-a

        Uses users from pkg-b.
        """)
    write(tmp_path, "packages/pkg-a/src/index.ts", """\
        import { UserSchema } from "@acme/pkg-b";

        export function createUserSession(user: User): string {
          return user.id;
        }
        """)
    write_json(tmp_path, "packages/pkg-b/package.json", {
        "name": "@acme/pkg-b",
        "version": "1.0.0",
    })
    write(tmp_path, "packages/pkg-b/src/user.ts", """\
        import { z } from "zod";

        export const UserSchema = z.object({
          id: z.string().uuid(),
          email: z.string().email(),
          name: z.string().min(1).optional(),
          address: AddressSchema.optional(),
        });

        export const AddressSchema = z.object({
          street: z.string(),
        });
        """)
    write(tmp_path, "services/orders/models.py", """\
        from typing import Optional

        from pydantic import BaseModel


        class Order(BaseModel):
            id: int
            note: Optional[str] = None
            customer: Customer
        """)
    return tmp_path


@pytest.fixture()
def config():
    return Config({"internal_namespace": "@acme/", "max_workers": 2})


@pytest.fixture()
def write_file():
    """Return the ``write(root, rel_path, content)`` helper."""
    return write


@pytest.fixture()
def write_manifest():
    """Return the ``write_json(root, rel_path, data)`` helper."""
    return write_json
