#!/usr/bin/env python3
from stm32dfu.cli import run

if __name__ == '__main__':
    run()
