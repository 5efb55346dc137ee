"""Shared fixtures: a small Folder/Document ACL tree.

    Folder:1 (root, grants principal:admin mask 7)
    └── Folder:2 (inheriting, no entries)
        ├── Document:5 (inheriting, no entries)
        └── Document:6 (inheriting, denies principal:bob READ)
    Folder:3 (root, no children)
"""

from __future__ import annotations

import pytest

from aclcore import AceRow, AclRow, InMemoryAclStore, ObjectIdentity

FOLDER_1 = ObjectIdentity("Folder", 1)
FOLDER_2 = ObjectIdentity("Folder", 2)
FOLDER_3 = ObjectIdentity("Folder", 3)
DOC_5 = ObjectIdentity("Document", 5)
DOC_6 = ObjectIdentity("Document", 6)
MISSING = ObjectIdentity("Document", 99)


def tree_rows() -> list[AclRow]:
    return [
        AclRow(
            object_identity=FOLDER_1,
            owner="principal:root",
            entries_inheriting=False,
            entries=[AceRow(id=1, sid="principal:admin", mask=7, granting=True)],
        ),
        AclRow(object_identity=FOLDER_2, parent_identity=FOLDER_1, owner="principal:root"),
        AclRow(object_identity=DOC_5, parent_identity=FOLDER_2, owner="principal:alice"),
        AclRow(
            object_identity=DOC_6,
            parent_identity=FOLDER_2,
            owner="principal:alice",
            entries=[
                AceRow(id=2, sid="principal:bob", mask=1, granting=False),
                AceRow(id=3, sid="principal:alice", mask=1, granting=True),
            ],
        ),
        AclRow(object_identity=FOLDER_3, owner="principal:root"),
    ]


def chain_rows(length: int, type_: str = "Node") -> list[AclRow]:
    """Linear chain Node:0 → Node:1 → … → Node:<length-1> (root)."""
    rows = []
    for i in range(length):
        parent = ObjectIdentity(type_, i + 1) if i + 1 < length else None
        rows.append(AclRow(object_identity=ObjectIdentity(type_, i), parent_identity=parent, owner="principal:root"))
    return rows


@pytest.fixture
def store() -> InMemoryAclStore:
    return InMemoryAclStore(tree_rows())


@pytest.fixture
def slow_store() -> InMemoryAclStore:
    return InMemoryAclStore(tree_rows(), delay=0.02)
