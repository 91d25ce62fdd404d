from __future__ import annotations

from dataclasses import dataclass

import redis

from replypilot.broker.base import QueueBackend, QueueDepth, QueueError, dead_key, delayed_key

# Moves due members of the delayed set onto the ready list in one step, so two
# promoters racing on the same queue cannot both push the same job.
_PROMOTE_DUE_LUA = """
local due = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1], 'LIMIT', 0, tonumber(ARGV[2]))
for _, item in ipairs(due) do
  if redis.call('ZREM', KEYS[1], item) == 1 then
    redis.call('RPUSH', KEYS[2], item)
  end
end
return #due
"""


@dataclass(frozen=True)
class RedisConfig:
    url: str
    socket_timeout_seconds: float | None = None


class RedisQueueBackend(QueueBackend):
    def __init__(self, config: RedisConfig) -> None:
        self._client = redis.Redis.from_url(
            config.url,
            socket_timeout=config.socket_timeout_seconds,
            health_check_interval=30,
        )
        self._promote_due = self._client.register_script(_PROMOTE_DUE_LUA)

    def push(self, *, queue_name: str, data: bytes) -> None:
        try:
            self._client.rpush(queue_name, data)
        except redis.RedisError as e:
            raise QueueError(str(e)) from e

    def pop_blocking(self, *, queue_name: str, timeout_seconds: int) -> bytes | None:
        try:
            if timeout_seconds <= 0:
                # BLPOP treats 0 as "block forever".
                data = self._client.lpop(queue_name)
                return bytes(data) if data is not None else None
            res = self._client.blpop([queue_name], timeout=timeout_seconds)
        except redis.RedisError as e:
            raise QueueError(str(e)) from e
        if res is None:
            return None
        _key, data = res
        return bytes(data)

    def schedule(self, *, queue_name: str, data: bytes, due_ts: float) -> None:
        try:
            self._client.zadd(delayed_key(queue_name), {data: due_ts})
        except redis.RedisError as e:
            raise QueueError(str(e)) from e

    def promote_due(self, *, queue_name: str, now_ts: float, limit: int = 100) -> int:
        try:
            moved = self._promote_due(
                keys=[delayed_key(queue_name), queue_name],
                args=[repr(now_ts), limit],
            )
        except redis.RedisError as e:
            raise QueueError(str(e)) from e
        return int(moved or 0)

    def push_dead(self, *, queue_name: str, data: bytes) -> None:
        try:
            self._client.lpush(dead_key(queue_name), data)
        except redis.RedisError as e:
            raise QueueError(str(e)) from e

    def list_dead(self, *, queue_name: str, limit: int) -> list[bytes]:
        try:
            items = self._client.lrange(dead_key(queue_name), 0, max(0, limit - 1))
        except redis.RedisError as e:
            raise QueueError(str(e)) from e
        return [bytes(item) for item in items]

    def remove_dead(self, *, queue_name: str, data: bytes) -> bool:
        try:
            removed = self._client.lrem(dead_key(queue_name), 1, data)
        except redis.RedisError as e:
            raise QueueError(str(e)) from e
        return bool(removed)

    def depth(self, *, queue_name: str) -> QueueDepth:
        try:
            pipe = self._client.pipeline(transaction=False)
            pipe.llen(queue_name)
            pipe.zcard(delayed_key(queue_name))
            pipe.llen(dead_key(queue_name))
            ready, delayed, dead = pipe.execute()
        except redis.RedisError as e:
            raise QueueError(str(e)) from e
        return QueueDepth(ready=int(ready), delayed=int(delayed), dead=int(dead))

    def publish(self, *, channel: str, data: bytes) -> None:
        try:
            self._client.publish(channel, data)
        except redis.RedisError as e:
            raise QueueError(str(e)) from e

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError:
            return False

    def close(self) -> None:
        self._client.close()
