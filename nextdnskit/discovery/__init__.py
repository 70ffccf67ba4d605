"""Discovery of client names and addresses from hosts files, DHCP leases, DNS, mDNS and routers."""