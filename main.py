import asyncio

import httpx
import uvicorn

from kanban_workspace.api import app


async def send_mock_requests():
    base_url = "http://127.0.0.1:8000"

    async with httpx.AsyncClient(timeout=30.0) as client:
        response = await client.post(
            f"{base_url}/boards",
            json={"name": "Demo", "description": "Mock board", "card_prefix": "demo"},
        )
        print(f"Create board: {response.status_code} - {response.json()}")
        board_id = response.json()["data"]["id"]

        column_ids = []
        for name in ("Todo", "In Progress", "Done"):
            response = await client.post(
                f"{base_url}/boards/{board_id}/columns", json={"name": name}
            )
            print(f"Create column {name}: {response.status_code} - {response.json()}")
            column_ids.append(response.json()["data"]["id"])

        response = await client.post(
            f"{base_url}/boards/{board_id}/cards",
            json={"column_id": column_ids[0], "title": "Write the parser", "points": 3},
        )
        print(f"Create card 1: {response.status_code} - {response.json()}")
        card1_id = response.json()["data"]["id"]

        response = await client.post(
            f"{base_url}/boards/{board_id}/cards",
            json={"column_id": column_ids[0], "title": "Ship the release", "points": 2},
        )
        print(f"Create card 2: {response.status_code} - {response.json()}")
        card2_id = response.json()["data"]["id"]

        response = await client.post(
            f"{base_url}/cards/{card1_id}/blocks", json={"card_id": card2_id}
        )
        print(f"Card 1 blocks card 2: {response.status_code} - {response.json()}")

        response = await client.post(f"{base_url}/cards/{card2_id}/blocks", json={"card_id": card1_id})
        print(f"Cycle rejected: {response.status_code} - {response.json()}")

        response = await client.post(f"{base_url}/cards/{card1_id}/move/right")
        print(f"Move card 1 right: {response.status_code} - {response.json()}")

        response = await client.post(f"{base_url}/cards/{card1_id}/toggle")
        print(f"Complete card 1: {response.status_code} - {response.json()}")

        response = await client.get(f"{base_url}/cards/{card2_id}/dependencies")
        print(f"Card 2 dependencies: {response.status_code} - {response.json()}")

        response = await client.get(f"{base_url}/cards/{card2_id}/branch")
        print(f"Card 2 branch: {response.status_code} - {response.json()}")

        response = await client.post(f"{base_url}/undo")
        print(f"Undo: {response.status_code} - {response.json()}")

        response = await client.get(f"{base_url}/boards/{board_id}/cards")
        print(f"List cards: {response.status_code} - {response.json()}")


async def main():
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host="127.0.0.1",
            port=8000,
            log_level="info",
        )
    )

    async def run_server():
        await server.serve()

    server_task = asyncio.create_task(run_server())

    await asyncio.sleep(2)

    await send_mock_requests()

    server.should_exit = True
    await server_task


if __name__ == "__main__":
    asyncio.run(main())
