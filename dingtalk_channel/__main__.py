from __future__ import annotations
from dingtalk_channel.cli import main

if __name__ == "__main__":
    main()
