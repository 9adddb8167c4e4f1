import runpy
import traceback

def main():
    try:
        runpy.run_module("alert_server.alert_server", run_name="__main__")
    except Exception:
        traceback.print_exc()
        input("\nPress Enter to exit...")

if __name__ == "__main__":
    main()
