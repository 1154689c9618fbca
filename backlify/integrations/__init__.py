# -*- coding: utf-8 -*-
# backlify/integrations/__init__.py
# External systems the payment core talks to (only the Epoint gateway).
