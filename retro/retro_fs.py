from __future__ import annotations
import os
import re
import shutil
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

_DRIVE_RE = re.compile(r"^[A-Za-z]:$")


def parse_path(path: str | Sequence[str]) -> List[str]:
    """Split `C:/Users/User` or `C:\\Users\\User` into its non-empty parts."""
    if isinstance(path, (list, tuple)):
        return list(path)
    return [p for p in str(path).replace("\\", "/").split("/") if p]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _extension(name: str, default: str = "txt") -> str:
    return name.rsplit(".", 1)[1] if "." in name else default


def _directory(**children) -> Dict[str, Any]:
    return {"type": "directory", "children": dict(children)}


def default_tree() -> Dict[str, Any]:
    return {
        "C:": {
            "type": "drive",
            "label": "Local Disk",
            "children": {
                "Windows": _directory(System32=_directory(), Media=_directory()),
                "Program Files": _directory(),
                "Scripts": _directory(),
                "Users": _directory(User=_directory(Desktop=_directory(), Documents=_directory())),
            },
        },
    }


class VirtualFileSystem:
    """In-memory drive tree. Nodes are dicts with a `type` of drive, directory or file."""

    def __init__(self, tree: Optional[Dict[str, Any]] = None):
        self.tree = tree if tree is not None else default_tree()

    @staticmethod
    def _children(node: Dict[str, Any]) -> Dict[str, Any]:
        return node["children"] if "children" in node else node

    def get_node(self, path) -> Optional[Dict[str, Any]]:
        current = self.tree
        for part in parse_path(path):
            container = self._children(current)
            if not isinstance(container, dict) or part not in container:
                return None
            current = container[part]
        return current

    def exists(self, path) -> bool:
        return self.get_node(path) is not None

    def _parent_children(self, path):
        parts = parse_path(path)
        if not parts:
            raise OSError(f"Invalid path: {path}")
        parent = self.get_node(parts[:-1])
        if parent is None or parent.get("type") == "file":
            raise FileNotFoundError(f"Parent directory not found: {'/'.join(parts[:-1])}")
        return parts, self._children(parent)

    def list_directory(self, path) -> List[Dict[str, Any]]:
        node = self.get_node(path)
        if node is None:
            raise FileNotFoundError(f"Path not found: {path}")
        if node.get("type") == "file":
            raise NotADirectoryError(f"Not a directory: {path}")
        items = []
        for name, item in self._children(node).items():
            if isinstance(item, dict) and item.get("type"):
                items.append({
                    "name": name,
                    "type": item["type"],
                    "extension": item.get("extension", ""),
                    "size": item.get("size", 0),
                    "created": item.get("created"),
                    "modified": item.get("modified"),
                })
        return items

    def read_file(self, path) -> str:
        node = self.get_node(path)
        if node is None:
            raise FileNotFoundError(f"File not found: {path}")
        if node.get("type") != "file":
            raise IsADirectoryError(f"Not a file: {path}")
        return node.get("content") or ""

    def write_file(self, path, content: str):
        parts, children = self._parent_children(path)
        name = parts[-1]
        content = str(content)
        now = _now()
        existing = children.get(name)
        if existing is not None and existing.get("type") != "file":
            raise IsADirectoryError(f"Not a file: {path}")
        if existing is not None:
            existing.update(content=content, size=len(content), modified=now)
        else:
            children[name] = {
                "type": "file",
                "content": content,
                "extension": _extension(name),
                "size": len(content),
                "created": now,
                "modified": now,
            }

    def delete_file(self, path):
        parts, children = self._parent_children(path)
        node = children.get(parts[-1])
        if node is None:
            raise FileNotFoundError(f"File not found: {path}")
        if node.get("type") != "file":
            raise IsADirectoryError(f"Not a file: {path}")
        del children[parts[-1]]

    def create_directory(self, path):
        parts, children = self._parent_children(path)
        if parts[-1] in children:
            raise FileExistsError(f"Directory already exists: {path}")
        children[parts[-1]] = _directory()

    def delete_directory(self, path, recursive: bool = False):
        parts, children = self._parent_children(path)
        node = children.get(parts[-1])
        if node is None:
            raise FileNotFoundError(f"Directory not found: {path}")
        if node.get("type") != "directory":
            raise NotADirectoryError(f"Not a directory: {path}")
        if node.get("children") and not recursive:
            raise OSError(f"Directory not empty: {path}")
        del children[parts[-1]]


class DiskFileSystem:
    """The same contract over a real directory. Drive letters map onto `root`."""

    def __init__(self, root: str | os.PathLike):
        self.root = os.path.realpath(os.fspath(root))

    def _resolve(self, path) -> str:
        parts = parse_path(path)
        if parts and _DRIVE_RE.match(parts[0]):
            parts = parts[1:]
        full = os.path.realpath(os.path.join(self.root, *parts))
        if full != self.root and not full.startswith(self.root + os.sep):
            raise PermissionError(f"Path escapes the filesystem root: {path}")
        return full

    async def get_node(self, path) -> Optional[Dict[str, Any]]:
        full = self._resolve(path)
        if os.path.isdir(full):
            return {"type": "directory", "name": os.path.basename(full)}
        if os.path.isfile(full):
            name = os.path.basename(full)
            return {"type": "file", "name": name, "extension": _extension(name, ""), "size": os.path.getsize(full)}
        return None

    async def exists(self, path) -> bool:
        return os.path.exists(self._resolve(path))

    async def list_directory(self, path) -> List[Dict[str, Any]]:
        full = self._resolve(path)
        if not os.path.exists(full):
            raise FileNotFoundError(f"Path not found: {path}")
        if not os.path.isdir(full):
            raise NotADirectoryError(f"Not a directory: {path}")
        items = []
        for name in sorted(os.listdir(full)):
            node = await self.get_node(os.path.join(full, name)[len(self.root):])
            if node is not None:
                items.append(node)
        return items

    async def read_file(self, path) -> str:
        full = self._resolve(path)
        if not os.path.exists(full):
            raise FileNotFoundError(f"File not found: {path}")
        if not os.path.isfile(full):
            raise IsADirectoryError(f"Not a file: {path}")
        with open(full, "r", encoding="utf-8") as f:
            return f.read()

    async def write_file(self, path, content: str):
        full = self._resolve(path)
        parent = os.path.dirname(full)
        if not os.path.isdir(parent):
            raise FileNotFoundError(f"Parent directory not found: {parent}")
        with open(full, "w", encoding="utf-8") as f:
            f.write(str(content))

    async def delete_file(self, path):
        full = self._resolve(path)
        if not os.path.exists(full):
            raise FileNotFoundError(f"File not found: {path}")
        if not os.path.isfile(full):
            raise IsADirectoryError(f"Not a file: {path}")
        os.remove(full)

    async def create_directory(self, path):
        full = self._resolve(path)
        if os.path.exists(full):
            raise FileExistsError(f"Directory already exists: {path}")
        if not os.path.isdir(os.path.dirname(full)):
            raise FileNotFoundError(f"Parent directory not found: {os.path.dirname(full)}")
        os.mkdir(full)

    async def delete_directory(self, path, recursive: bool = False):
        full = self._resolve(path)
        if not os.path.exists(full):
            raise FileNotFoundError(f"Directory not found: {path}")
        if not os.path.isdir(full):
            raise NotADirectoryError(f"Not a directory: {path}")
        if full == self.root:
            raise PermissionError("Refusing to delete the filesystem root")
        if os.listdir(full) and not recursive:
            raise OSError(f"Directory not empty: {path}")
        shutil.rmtree(full)


__all__ = ["VirtualFileSystem", "DiskFileSystem", "parse_path", "default_tree"]
