import asyncio
import json
import uuid
import websockets  # lightweight client; to install: pip install websockets

async def main():
    uri = "ws://localhost:8000/ws?sender=alice"
    async with websockets.connect(uri) as ws:
        print("Server:", await ws.recv())  # connected info
        # publish a chat message to the default 'messages' topic
        msg = {
            "type": "publish",
            "content": "hello from the publisher example",
            "request_id": str(uuid.uuid4())
        }
        print("Client Message: ", msg)
        await ws.send(json.dumps(msg))
        # our own broadcast arrives first, then the ack with the stored message
        while True:
            resp = json.loads(await ws.recv())
            print("Server:", resp)
            if resp.get("request_id") == msg["request_id"]:
                break

if __name__ == "__main__":
    asyncio.run(main())
