"""Allow ``python -m tether``."""

from .app import main

raise SystemExit(main())
