#!/usr/bin/env python3
"""Run script for the Pixel Singularity game server."""
import os
import sys

# Add the project root to path
sys.path.insert(0, os.path.dirname(__file__))

from pixelsingularity.app import create_app

if __name__ == '__main__':
    app = create_app('development')

    # Initialize database
    with app.app_context():
        from pixelsingularity.models import db
        db.create_all()
        print("Database initialized.")

    port = int(os.environ.get('PORT', 5001))
    print("Starting Pixel Singularity game server...")
    print(f"API available at http://localhost:{port}/api/game/state")
    app.run(debug=True, host='0.0.0.0', port=port)
