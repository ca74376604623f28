"""本地启动入口：python -m career_relay.api.serve"""

import os

import uvicorn
from dotenv import load_dotenv

# 加载.env文件中的环境变量（HOST/PORT 等非 Settings 字段也从这里读取）
load_dotenv()


def main() -> None:
    from career_relay.api.service import create_app

    uvicorn.run(
        create_app(),
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
    )


if __name__ == "__main__":
    main()
