"""Hub 分组索引"""

from typing import TYPE_CHECKING, Dict, Set

if TYPE_CHECKING:
    from .connection import Connection


class GroupIndex:
    """密钥哈希 -> 连接集合

    只由 Hub 的串行化任务修改。集合为空时删除对应的键。
    """

    def __init__(self):
        self._groups: Dict[str, Set["Connection"]] = {}

    def __len__(self) -> int:
        return len(self._groups)

    def __contains__(self, key: str) -> bool:
        return key in self._groups

    def add(self, key: str, connection: "Connection") -> None:
        """把连接加入分组

        Args:
            key: 非空的密钥哈希
            connection: 连接
        """
        if not key:
            raise ValueError("Group key must not be empty")
        self._groups.setdefault(key, set()).add(connection)

    def remove(self, key: str, connection: "Connection") -> bool:
        """从分组中移除连接

        Returns:
            连接原本是否在该分组中
        """
        members = self._groups.get(key)
        if not members or connection not in members:
            return False

        members.discard(connection)
        if not members:
            del self._groups[key]
        return True

    def members(self, key: str) -> Set["Connection"]:
        """获取分组成员的快照"""
        return set(self._groups.get(key, ()))

    def size(self, key: str) -> int:
        return len(self._groups.get(key, ()))
