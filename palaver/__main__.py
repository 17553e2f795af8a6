from palaver.main import main

raise SystemExit(main())
