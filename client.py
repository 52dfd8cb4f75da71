"""Uploader client - single-shot and chunked uploads against a running server.

Start the server first, e.g. ``BACKEND=mock python server.py``.
"""

import hashlib
import uuid

import httpx

BASE_URL = "http://localhost:3232"
CHUNK_SIZE = 4

client = httpx.Client(base_url=BASE_URL, timeout=60)

print("1. UPLOAD - single request")
payload = b"hello"
response = client.post("/uploadx", files={"file": ("hello.txt", payload, "text/plain")})
print(response.json())

print("2. UPLOAD - with a claimed sha256 digest")
response = client.post(
    "/uploadx",
    files={"file": ("hello.txt", payload, "text/plain")},
    data={"hash": hashlib.sha256(payload).hexdigest()},
)
print(response.json())

print("3. UPLOAD - claimed digest that does not match")
response = client.post(
    "/uploadx",
    files={"file": ("world.txt", b"world", "text/plain")},
    data={"hash": hashlib.sha256(payload).hexdigest()},
)
print(response.status_code, response.json())

print("4. CHUNKED UPLOAD - out of order")
content = b"The quick brown fox jumps over the lazy dog"
chunks = [content[i : i + CHUNK_SIZE] for i in range(0, len(content), CHUNK_SIZE)]
upload_id = uuid.uuid4().hex
for index in reversed(range(len(chunks))):
    response = client.post(
        "/uploadx/chunk",
        files={"file": ("fox.txt", chunks[index], "text/plain")},
        data={"uploadId": upload_id, "chunkIndex": str(index), "totalChunks": str(len(chunks))},
    )
    print(response.json())

print("5. BLOBS - list")
print(client.get("/blobs").json())

print("6. BLOBS - download")
digest = hashlib.sha256(content).hexdigest()
print(client.get(f"/blobs/{digest}/content").content)

print("7. STATUS - backend node")
print(client.get("/status").json())
