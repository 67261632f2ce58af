from campus_market.cli import main

raise SystemExit(main())
