import asyncio
import time
import subprocess
import httpx
import sys
import os
import signal

from backend.app.core.jwt import create_access_token
from backend.app.db.session import AsyncSessionLocal
from backend.app.services.user_directory import find_user_by_email
from backend.seed_reference_data import seed_reference_data, STAFF

BASE_URL = "http://127.0.0.1:8000"
API_PREFIX = "/v1"
HUB = "MIA"


def wait_for_server(retries=10, delay=2):
    url = f"{BASE_URL}/health"
    print(f"Waiting for server at {url}...")
    for i in range(retries):
        try:
            resp = httpx.get(url)
            if resp.status_code == 200:
                print("✅ Server is up!")
                return True
        except httpx.ConnectError:
            pass
        time.sleep(delay)
    print("❌ Server failed to start.")
    return False


def start_server(echo=False):
    env = {**os.environ, "DB_ECHO": "True"} if echo else None
    return subprocess.Popen(
        [sys.executable, "-m", "uvicorn", "backend.app.main:app", "--host", "127.0.0.1", "--port", "8000"],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        env=env,
    )


def stop_server(proc):
    proc.send_signal(signal.SIGTERM)
    proc.wait()


async def staff_headers():
    """Bearer header for the seeded administrator."""
    await seed_reference_data()
    email = STAFF[0]["email"]
    async with AsyncSessionLocal() as db:
        admin = await find_user_by_email(db, email)
    token = create_access_token(data={"sub": admin.email, "user_id": admin.id, "role": admin.role.value})
    return {"Authorization": f"Bearer {token}"}


def run_verification():
    headers = asyncio.run(staff_headers())

    # 1. Start Server (First Run)
    print("\n--- [Step 1] Starting Server (Initial) ---")
    proc = start_server(echo=True)

    try:
        if not wait_for_server():
            server_logs = proc.communicate(timeout=2)
            print("Server Stdout:", server_logs[0].decode())
            print("Server Stderr:", server_logs[1].decode())
            raise Exception("Server start failed")

        # 2. Allocate an address
        print("\n--- [Step 2] Allocating Address (Persistence Test) ---")
        resp = httpx.post(f"{BASE_URL}{API_PREFIX}/addresses/generate", json={"hub": HUB}, headers=headers)

        if resp.status_code == 409:
            print(f"⚠️ Address already exists (persistence working from previous run?): {resp.json()['details']}")
        elif resp.status_code == 201:
            print(f"✅ Address Allocated: {resp.json()['address_code']}")
        else:
            print(f"❌ Allocation Failed: {resp.status_code} {resp.text}")
            raise Exception("Allocation failed")

        resp = httpx.get(f"{BASE_URL}{API_PREFIX}/addresses/statistics/{HUB}", headers=headers)
        sequence_before = resp.json()["current_sequence"]
        print(f"Hub {HUB} sequence: {sequence_before}")

    finally:
        print("\n--- [Step 3] Stopping Server ---")
        stop_server(proc)

    time.sleep(2)  # Wait for port release

    # 3. Restart Server
    print("\n--- [Step 4] Restarting Server (Verification) ---")
    proc2 = start_server()

    try:
        if not wait_for_server():
            raise Exception("Server restart failed")

        print("\n--- [Step 5] Reading Addresses (Post-Restart) ---")
        resp = httpx.get(f"{BASE_URL}{API_PREFIX}/addresses/mine", headers=headers)
        codes = [a["address_code"] for a in resp.json()] if resp.status_code == 200 else []
        if any(code.startswith(f"HT-{HUB}-") for code in codes):
            print(f"✅ Address Persisted: {codes}")
        else:
            print(f"❌ Address Missing (Persistence Issue?): {resp.status_code} {resp.text}")
            raise Exception("Address lost after restart")

        print("\n--- [Step 6] Verifying Hub Sequence ---")
        resp = httpx.get(f"{BASE_URL}{API_PREFIX}/addresses/statistics/{HUB}", headers=headers)
        sequence_after = resp.json()["current_sequence"]
        if sequence_after == sequence_before:
            print(f"✅ Sequence Persisted: {sequence_after}")
        else:
            print(f"❌ Sequence Changed: {sequence_before} -> {sequence_after}")
            raise Exception("Sequence drifted after restart")

    finally:
        print("\n--- [Step 7] Stopping Server ---")
        stop_server(proc2)


if __name__ == "__main__":
    run_verification()
