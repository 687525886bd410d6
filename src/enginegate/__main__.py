"""python -m enginegate"""

from .cli import main

raise SystemExit(main())
