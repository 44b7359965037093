"""
Scripted stand-in for a ``websockets`` client connection.

Frames the client sends are recorded in ``sent``; frames queued with
``push()`` are yielded to the client's reader. Subscribe and unsubscribe
requests are acknowledged automatically unless ``auto_reply`` is off.
"""

import asyncio
import json


class FakeSocket:
    def __init__(self, auto_reply=True, refuse=False):
        self.sent = []
        self.incoming = asyncio.Queue()
        self.closed = False
        self.auto_reply = auto_reply
        self.refuse = refuse

    async def send(self, text):
        message = json.loads(text)
        self.sent.append(message)
        if not self.auto_reply:
            return
        if self.refuse:
            self.push({"jsonrpc": "2.0", "error": {"code": -32601, "message": "nope"}, "id": message["id"]})
        else:
            self.push({
                "jsonrpc": "2.0",
                "result": {"status": "OK", "subId": message["params"]["subId"]},
                "id": message["id"],
            })

    def push(self, payload):
        self.incoming.put_nowait(json.dumps(payload))

    def notify(self, sub_id, payload):
        self.push({"jsonrpc": "2.0", "method": "subscribe", "params": {"subId": sub_id, "payload": payload}})

    def drop(self):
        """Simulate the server going away."""
        self.incoming.put_nowait(None)

    async def close(self):
        self.closed = True
        self.incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item


class FakeConnector:
    """Hands out a fresh FakeSocket per connect and remembers them."""

    def __init__(self, **socket_kwargs):
        self.sockets = []
        self.urls = []
        self.fail = False
        self.socket_kwargs = socket_kwargs

    async def __call__(self, url):
        self.urls.append(url)
        if self.fail:
            raise OSError("connection refused")
        socket = FakeSocket(**self.socket_kwargs)
        self.sockets.append(socket)
        return socket

    @property
    def current(self):
        return self.sockets[-1]
