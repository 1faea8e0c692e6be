#!/usr/bin/env python3

"""
Startup script for the Switchbook API.
"""

import logging
import sys
import os

def main():
    """Start the API server."""
    try:
        from switchbook_api.app import create_app

        logging.basicConfig(
            level=os.environ.get('LOG_LEVEL', 'INFO'),
            format='%(asctime)s %(levelname)s %(name)s: %(message)s'
        )

        print("⌨️  Starting Switchbook API...")

        app = create_app()

        port = int(os.environ.get('PORT', 8000))
        print(f"📡 Server starting on http://localhost:{port}")
        print("🔍 Available endpoints:")
        print(f"   GET  http://localhost:{port}/api/health")
        print(f"   GET  http://localhost:{port}/api/switches")
        print(f"   POST http://localhost:{port}/api/switches/bulk")
        print(f"   GET  http://localhost:{port}/api/master-switches?search=<name>")
        print(f"   POST http://localhost:{port}/api/master-switches/submit")
        print(f"   POST http://localhost:{port}/api/switches/sync-all-master")
        print("\n📖 See switchbook_api/routes/ for the full endpoint list")
        print("🛑 Press Ctrl+C to stop the server\n")

        app.run(
            debug=os.environ.get('FLASK_DEBUG', '1') == '1',
            host='0.0.0.0',
            port=port,
            use_reloader=True
        )

    except KeyboardInterrupt:
        print("\n🛑 Server stopped by user")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)

if __name__ == "__main__":
    main()
