import asyncio
import json
import uuid
import websockets

async def main():
    uri = "ws://localhost:8000/ws?client_id=s1&sender=bob"
    async with websockets.connect(uri) as ws:
        # every connection starts on 'messages'; also listen to 'orders'
        sub = {"type": "subscribe", "topic": "orders", "request_id": str(uuid.uuid4())}
        await ws.send(json.dumps(sub))
        print("Awaiting messages... (press Ctrl+C to exit)")
        try:
            while True:
                msg = json.loads(await ws.recv())
                if msg["type"] == "event":
                    m = msg["message"]
                    print(f"[{msg['topic']}] #{m['id']} {m['sender']}: {m['content']}")
                else:
                    print("Received:", msg)
        except KeyboardInterrupt:
            unsub = {"type": "unsubscribe", "topic": "orders", "request_id": str(uuid.uuid4())}
            await ws.send(json.dumps(unsub))
            print("Unsubscribed.")

if __name__ == "__main__":
    asyncio.run(main())
