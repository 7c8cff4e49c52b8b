#!/usr/bin/env python3
"""
Development server runner

    python run.py [path/to/config.yaml]
"""
import os
import sys

from archivist import create_app

if __name__ == '__main__':
    overrides = {}
    if len(sys.argv) > 1:
        overrides['CONFIG_PATH'] = os.path.abspath(sys.argv[1])

    app = create_app(os.environ.get('FLASK_ENV', 'development'), overrides)

    port = int(os.environ.get('PORT', 5000))
    app.run(host='0.0.0.0', port=port, debug=app.config.get('DEBUG', False))
