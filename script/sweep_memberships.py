#!/usr/bin/env python3
from core.db import DB
from jobs.membership import run_membership_sweep


def main():
    DB.create_tables()
    result = run_membership_sweep()
    print(result)


if __name__ == "__main__":
    main()
