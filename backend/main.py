# main.py (в корне backend)
#!/usr/bin/env python3
"""
Точка входа для Keyguard API
"""
import uvicorn
from keyguard.main import app

if __name__ == "__main__":
    uvicorn.run(
        "keyguard.main:app",
        host="0.0.0.0",
        port=8000,
        reload=False
    )
