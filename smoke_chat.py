import asyncio
import json
import sys

import websockets

# Usage: python smoke_chat.py <sender-user-id> <receiver-user-id> [ws-url]
# User ids come from POST /signup or POST /login on the running server.


async def smoke(sender_id, receiver_id, url):
    async with websockets.connect(url) as ws:
        await ws.send(json.dumps({"type": "register", "userId": sender_id}))
        registered = await ws.recv()
        print(f"Registered: {registered}")

        # 发送消息
        await ws.send(json.dumps({
            "type": "send_message",
            "receiverId": receiver_id,
            "message": "Hello from Python!"
        }))

        # 接收确认
        ack = await ws.recv()
        print(f"Received: {ack}")


if __name__ == "__main__":
    if len(sys.argv) < 3:
        sys.exit("usage: smoke_chat.py <sender-user-id> <receiver-user-id> [ws-url]")
    target = sys.argv[3] if len(sys.argv) > 3 else "ws://localhost:4004/ws"
    asyncio.run(smoke(sys.argv[1], sys.argv[2], target))
