import sys

from vsphere_telemetry.agent.cli import main

sys.exit(main())
