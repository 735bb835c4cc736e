"""
Conversation Simulation Script

Drives concurrent chat sessions against a running server and plays the
restaurant side through fake Evolution API webhooks.
Run from project root (server in development mode):

    uvicorn concierge.main:app --port 8001
    python scripts/simulate.py --sessions 3

Version: 1.0.0
"""

import argparse
import asyncio
import random
import sys
import time
import uuid
from datetime import datetime
from typing import Any, Optional

import httpx

API_BASE_URL = "http://localhost:8001"
TOTAL_SESSIONS = 3

FOODS = [
    "quero uma pizza calabresa grande",
    "uma pizza margherita média, por favor",
    "queria um hambúrguer artesanal com batata",
    "um combinado de sushi para duas pessoas",
]
STREETS = ["Rua das Flores", "Avenida Atlântica", "Rua Moreira César", "Travessa do Ouvidor"]
CITIES = ["Niterói", "Rio de Janeiro", "Petrópolis"]
PAYMENTS = ["pix", "cartão de crédito", "dinheiro, troco pra 100"]

RESTAURANT_SCRIPT = [
    "Olá! Recebemos seu pedido.",
    "Qual a forma de pagamento? Precisa de troco?",
    "Pedido confirmado! Chega em 40 minutos",
    "Já estamos preparando",
    "Saiu para entrega!",
]


def generate_customer() -> list[str]:
    """Chat messages that fill every order field."""
    return [
        random.choice(FOODS),
        f"{random.choice(STREETS)}, {random.randint(1, 999)}, {random.choice(CITIES)}",
        f"meu whatsapp é 21 9{random.randint(1000, 9999)}-{random.randint(1000, 9999)}",
        random.choice(PAYMENTS),
    ]


def webhook_payload(contact_id: str, text: str) -> dict[str, Any]:
    return {
        "event": "messages.upsert",
        "instance": "simulation",
        "data": {
            "key": {
                "remoteJid": f"{contact_id}@s.whatsapp.net",
                "fromMe": False,
                "id": uuid.uuid4().hex[:16].upper(),
            },
            "message": {"conversation": text},
        },
    }


async def chat(client: httpx.AsyncClient, session_id: str, message: str) -> dict[str, Any]:
    response = await client.post(
        f"{API_BASE_URL}/api/chat",
        json={"sessionId": session_id, "message": message},
        timeout=30.0,
    )
    response.raise_for_status()
    return response.json()


async def poll_until(
    client: httpx.AsyncClient,
    session_id: str,
    timeout: float = 30.0,
) -> Optional[dict[str, Any]]:
    deadline = time.time() + timeout
    while time.time() < deadline:
        response = await client.post(f"{API_BASE_URL}/api/poll", json={"sessionId": session_id})
        data = response.json()
        if data.get("hasNewMessage"):
            return data
        await asyncio.sleep(0.5)
    return None


# =============================================================================
# ONE CUSTOMER
# =============================================================================

async def run_session(client: httpx.AsyncClient, number: int) -> dict[str, Any]:
    """Chat until an order is placed, then play the restaurant."""
    session_id = f"sim_{number}_{uuid.uuid4().hex[:6]}"
    start_time = time.time()
    result = {"session": session_id, "success": False}

    try:
        for message in generate_customer():
            await chat(client, session_id, message)

        options = await poll_until(client, session_id)
        if not options or not options.get("restaurants"):
            result["error"] = "no restaurant options"
            return result

        restaurants = options["restaurants"]
        picks = random.sample(range(1, len(restaurants) + 1), len(restaurants))
        chosen = None
        for pick in picks:
            reply = await chat(client, session_id, str(pick))
            if "atendendo outro" not in reply["message"]:
                chosen = restaurants[pick - 1]
                break
        if chosen is None:
            result["error"] = "every restaurant busy"
            return result

        contact = chosen["contactId"]
        notifications = 0
        for text in RESTAURANT_SCRIPT:
            await asyncio.sleep(random.uniform(0.5, 1.5))
            await client.post(f"{API_BASE_URL}/webhook/whatsapp", json=webhook_payload(contact, text))
            if "forma de pagamento" in text:
                if await poll_until(client, session_id, timeout=10.0):
                    notifications += 1
                await chat(client, session_id, "vou pagar como combinado, sem troco")

        while await poll_until(client, session_id, timeout=3.0):
            notifications += 1

        state = (await client.get(f"{API_BASE_URL}/api/sessions/{session_id}")).json()
        result.update(
            success=state["order"]["status"] == "out_for_delivery",
            restaurant=chosen["name"],
            status=state["order"]["status"],
            notifications=notifications,
        )
    except httpx.HTTPError as e:
        result["error"] = str(e)[:100]
    finally:
        result["time"] = round(time.time() - start_time, 2)
    return result


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(num_sessions: int = TOTAL_SESSIONS) -> dict[str, Any]:
    print("=" * 70)
    print("🔥 CONCIERGE SIMULATION")
    print("=" * 70)
    print(f"📋 Sessions: {num_sessions}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()
    async with httpx.AsyncClient() as client:
        health = await client.get(f"{API_BASE_URL}/health")
        if health.status_code != 200:
            print(f"❌ Health check failed: {health.text}")
            sys.exit(1)
        print(f"✅ Server up ({health.json().get('environment')})\n")

        results = await asyncio.gather(*(run_session(client, i + 1) for i in range(num_sessions)))

    total_time = round(time.time() - start_time, 2)
    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ Delivered: {len(successful)}/{num_sessions}")
    print(f"❌ Failed: {len(failed)}/{num_sessions}")
    print(f"⏱️  Total Time: {total_time}s")

    for r in successful:
        print(f"   {r['session']}: {r['restaurant']} ({r['notifications']} chat notification(s), {r['time']}s)")
    if failed:
        print("\n⚠️  Failures:")
        for r in failed:
            print(f"   {r['session']}: {r.get('error') or r.get('status')}")
    print("=" * 70)

    return {"total": num_sessions, "successful": len(successful), "failed": len(failed), "results": results}


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Concierge conversation simulation")
    parser.add_argument("--sessions", type=int, default=TOTAL_SESSIONS, help="Concurrent chat sessions")
    parser.add_argument("--url", default=API_BASE_URL, help="Server base URL")
    args = parser.parse_args()

    API_BASE_URL = args.url
    asyncio.run(run_simulation(args.sessions))
