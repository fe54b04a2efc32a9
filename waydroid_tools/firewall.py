import logging

from waydroid_tools import probe
from waydroid_tools import run
from waydroid_tools.log import success
from waydroid_tools.probe import FirewallBackend


def forward_rules(backend, interface):
    if backend is FirewallBackend.UFW:
        return [["ufw", "route", "allow", "in", "on", interface],
                ["ufw", "route", "allow", "out", "on", interface]]
    if backend is FirewallBackend.NFT:
        return [["nft", "add", "rule", "inet", "filter", "forward",
                 "iifname", interface, "accept"],
                ["nft", "add", "rule", "inet", "filter", "forward",
                 "oifname", interface, "accept"]]
    if backend is FirewallBackend.IPTABLES:
        return [["iptables", "-I", "FORWARD", "-i", interface, "-j", "ACCEPT"],
                ["iptables", "-I", "FORWARD", "-o", interface, "-j", "ACCEPT"]]
    raise ValueError("Unsupported firewall backend: %s" % backend)


class FirewallProvisioner:

    def __init__(self, interface, detect=probe.detect_firewall_backend,
                 rule_status=probe.forward_rule_status):
        self.interface = interface
        self.detect = detect
        self.rule_status = rule_status

    def ensure(self):
        """Allow forwarding through the container bridge in both directions.

        Returns False only when no supported firewall is installed. Only the
        missing direction is added. A rule that does not show up afterwards is
        a warning: some backends only list it once the bridge exists.
        """
        logging.info("Configuring firewall for Waydroid network access")
        backend = self.detect()
        if backend is None:
            logging.warning(
                "No supported firewall detected (ufw, nftables, iptables). "
                "Allow forwarding on %s manually if the container has no "
                "network." % self.interface)
            return False
        logging.info("Detected %s" % backend.value)
        present = self.rule_status(backend, self.interface)
        if all(present):
            success("%s already allows %s" % (backend.value, self.interface))
            return True
        rules = forward_rules(backend, self.interface)
        for command, exists in zip(rules, present):
            if exists:
                continue
            result = run.run(command)
            if not result.ok:
                logging.warning("%s: %s" % (" ".join(command), result.output))
        if all(self.rule_status(backend, self.interface)):
            success("%s rules updated for %s" % (backend.value, self.interface))
        else:
            logging.warning(
                "%s rules for %s are not visible yet; a reboot may be "
                "required" % (backend.value, self.interface))
        return True
