import uvicorn

from .config import get_settings

if __name__ == "__main__":
    # Run the OpenAI-compatible gateway, port 8787 unless PORT is set
    uvicorn.run("ddg_chat.main:app", host="0.0.0.0", port=get_settings().PORT)
