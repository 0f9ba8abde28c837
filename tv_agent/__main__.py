from __future__ import annotations

from tv_agent.daemon import main

if __name__ == "__main__":
    main()
