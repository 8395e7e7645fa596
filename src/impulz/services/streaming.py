import json


SSE_DONE = "data: [DONE]\n\n"


def sse_text(text: str) -> str:
    return f"data: {json.dumps({'text': text})}\n\n"
