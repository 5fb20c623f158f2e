import asyncio
import sys
import uvicorn

def main():
    if sys.platform == 'win32':
        # Force ProactorEventLoop for subprocess support
        asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())
        print("Launchpad Wrapper: Windows Proactor Event Loop Policy established.")

    uvicorn.run(
        "launchpad.main:app",
        host="0.0.0.0",
        port=8000,
        log_level="info"
    )

if __name__ == "__main__":
    main()
