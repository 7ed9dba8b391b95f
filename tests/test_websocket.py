import asyncio

from api.websocket import ConnectionManager


class RecordingSocket:
    def __init__(self, broken=False):
        self.broken = broken
        self.sent = []

    async def send_json(self, data):
        if self.broken:
            raise RuntimeError("connection closed")
        self.sent.append(data)


def test_broadcast_reaches_live_clients_and_drops_dead_ones():
    manager = ConnectionManager()
    live, dead = RecordingSocket(), RecordingSocket(broken=True)
    manager.clients.update({live, dead})
    event = {"event": "job:log", "job_id": "job_1", "line": "Transcribing"}

    asyncio.run(manager.broadcast(event))
    asyncio.run(manager.broadcast(event))

    assert live.sent == [event, event]
    assert manager.clients == {live}
